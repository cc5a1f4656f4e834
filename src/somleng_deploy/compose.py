"""
Docker Compose driver.

Every call is delegated to 'docker compose -f <file>' inside the deploy
directory. The bootstrap job is the only call whose failure does not raise:
its exit code and output are returned so the caller decides what to do.
"""
import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from somleng_deploy.exceptions import OrchestratorError
from somleng_deploy.utils.commands import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

CREDENTIAL_LABELS = ('account_sid', 'auth_token', 'phone_number')


@dataclass
class BootstrapCredentials:
    """Credentials printed by the bootstrap job, when it printed any."""
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    phone_number: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.account_sid)


@dataclass
class BootstrapResult:
    returncode: int
    output: str
    credentials: BootstrapCredentials = field(default_factory=BootstrapCredentials)

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def _label_pattern(label: str):
    return re.compile(rf'\b{re.escape(label)}:\s*(\S+)')


_LABEL_PATTERNS = {label: _label_pattern(label) for label in CREDENTIAL_LABELS}


def parse_bootstrap_credentials(output: Optional[str]) -> BootstrapCredentials:
    """Best-effort extraction of 'label: value' pairs from bootstrap output.

    The first match per label wins. Labels that never appear stay None.
    """
    found = {}
    for label, pattern in _LABEL_PATTERNS.items():
        match = pattern.search(output or "")
        if match:
            found[label] = match.group(1)
    return BootstrapCredentials(**found)


def parse_ps_output(raw: str) -> List[Dict[str, Any]]:
    """Parse 'compose ps --format json' output.

    Newer compose releases print one JSON object per line, older ones a single
    JSON array.
    """
    raw = (raw or "").strip()
    if not raw:
        return []
    if raw.startswith('['):
        entries = json.loads(raw)
    else:
        entries = [json.loads(line) for line in raw.splitlines() if line.strip()]
    return [entry for entry in entries if isinstance(entry, dict)]


class ComposeDriver:
    """Runs compose subcommands for one project directory."""

    def __init__(self, project_dir: Union[str, Path], compose_file: str,
                 docker_command: Sequence[str] = ('docker',), runner: Optional[CommandRunner] = None):
        self.project_dir = Path(project_dir)
        self.compose_file = compose_file
        self.docker_command = list(docker_command)
        self.runner = runner or CommandRunner()

    def base_command(self) -> List[str]:
        return [*self.docker_command, 'compose', '-f', self.compose_file]

    def display_command(self, *args: str) -> str:
        """The plain 'docker compose -f ...' line shown to operators."""
        return " ".join(['docker', 'compose', '-f', self.compose_file, *args])

    def _run(self, args: Sequence[str], description: str, capture: bool = False) -> CommandResult:
        try:
            return self.runner.run([*self.base_command(), *args], cwd=self.project_dir, capture=capture)
        except subprocess.CalledProcessError as e:
            raise OrchestratorError(
                f"{description} failed (exit {e.returncode})",
                returncode=e.returncode,
                output=e.output or "",
            )
        except OSError as e:
            raise OrchestratorError(f"{description} failed: {e}")

    def pull(self) -> None:
        logger.info("Pulling container images (this may take a few minutes)...")
        self._run(['pull'], "Image pull")

    def run_bootstrap(self, service: str, profile: str = "bootstrap") -> BootstrapResult:
        """Run the one-shot bootstrap service to completion.

        Output is captured (stderr folded into stdout) and parsed for
        credentials even when the job exits non-zero.
        """
        logger.info("Bootstrapping the database...")
        args = [*self.base_command(), '--profile', profile, 'run', '--rm', '-T', service]
        try:
            result = self.runner.run(args, cwd=self.project_dir, check=False,
                                     capture=True, merge_stderr=True)
        except OSError as e:
            logger.warning(f"⚠️  Could not start bootstrap job: {e}")
            return BootstrapResult(returncode=127, output=str(e))

        output = result.stdout
        if result.stderr:
            output = f"{output}{result.stderr}"
        credentials = parse_bootstrap_credentials(output)
        return BootstrapResult(returncode=result.returncode, output=output, credentials=credentials)

    def up(self, wait: bool = True) -> None:
        logger.info("Starting all services...")
        args = ['up', '-d']
        if wait:
            args.append('--wait')
        self._run(args, "Service start")

    def ps(self) -> List[Dict[str, Any]]:
        result = self._run(['ps', '--format', 'json'], "Service status", capture=True)
        try:
            return parse_ps_output(result.stdout)
        except json.JSONDecodeError as e:
            raise OrchestratorError(f"Could not parse compose ps output: {e}")

    def logs(self, follow: bool = False, services: Sequence[str] = ()) -> None:
        args = ['logs']
        if follow:
            args.append('-f')
        self._run([*args, *services], "Log retrieval")

    def down(self) -> None:
        logger.info("Stopping all services...")
        self._run(['down'], "Service stop")
