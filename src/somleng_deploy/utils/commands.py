"""Thin wrapper around subprocess used by every stage that shells out."""
import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class CommandResult:
    """Outcome of a finished command. Output fields are empty when not captured."""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Run external commands, escalating with sudo when not running as root."""

    def __init__(self, is_root: Optional[bool] = None):
        if is_root is None:
            is_root = hasattr(os, "geteuid") and os.geteuid() == 0
        self.is_root = is_root

    def sudo(self) -> List[str]:
        """Return ['sudo'] prefix, or [] if already running as root."""
        return [] if self.is_root else ['sudo']

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def run(self, args: Sequence[str], cwd: Optional[PathLike] = None, check: bool = True,
            capture: bool = False, merge_stderr: bool = False,
            timeout: Optional[float] = None) -> CommandResult:
        """Run a command.

        Args:
            args: Command and arguments
            cwd: Working directory
            check: Raise CalledProcessError on a non-zero exit code
            capture: Capture stdout/stderr instead of streaming to the terminal
            merge_stderr: With capture, fold stderr into stdout
            timeout: Seconds before the command is killed

        Returns:
            CommandResult with the exit code and any captured output
        """
        args = [str(a) for a in args]
        logger.debug(f"$ {shlex.join(args)}")

        kwargs = {'cwd': str(cwd) if cwd else None, 'text': True, 'timeout': timeout}
        if capture:
            kwargs['stdout'] = subprocess.PIPE
            kwargs['stderr'] = subprocess.STDOUT if merge_stderr else subprocess.PIPE

        completed = subprocess.run(args, check=False, **kwargs)
        result = CommandResult(
            args=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and not result.ok:
            raise subprocess.CalledProcessError(
                result.returncode, args, output=result.stdout, stderr=result.stderr
            )
        return result

    def run_shell(self, script: str, cwd: Optional[PathLike] = None,
                  check: bool = True) -> CommandResult:
        """Run a shell pipeline (used for 'curl ... | gpg' style steps)."""
        logger.debug(f"$ {script}")
        completed = subprocess.run(
            script, shell=True, cwd=str(cwd) if cwd else None, text=True, check=False
        )
        result = CommandResult(args=[script], returncode=completed.returncode)
        if check and not result.ok:
            raise subprocess.CalledProcessError(result.returncode, script)
        return result
