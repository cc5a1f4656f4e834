"""
Prerequisite and environment detection.

Finds the host's public IP through a chain of IP echo services, reads the
OS release file and checks that Docker and its compose plugin are usable,
falling back to 'sudo docker' when the daemon socket is not accessible to
the current user.
"""
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import docker
import requests

from somleng_deploy.exceptions import PrerequisiteError
from somleng_deploy.utils.commands import CommandRunner

logger = logging.getLogger(__name__)

OS_RELEASE_PATH = Path("/etc/os-release")


def detect_public_ip(endpoints: Sequence[str], timeout: float = 5.0,
                     session: Optional[requests.Session] = None) -> Optional[str]:
    """Return the first non-empty answer from the IP echo endpoints.

    Endpoints are tried in order with a single attempt each; errors and
    non-2xx responses move on to the next endpoint.
    """
    http = session or requests
    for endpoint in endpoints:
        try:
            response = http.get(endpoint, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.debug(f"IP echo endpoint {endpoint} failed: {e}")
            continue

        address = response.text.strip()
        if address:
            logger.debug(f"Public IP {address} reported by {endpoint}")
            return address
        logger.debug(f"IP echo endpoint {endpoint} returned an empty body")

    return None


def resolve_public_ip(explicit_ip: Optional[str], endpoints: Sequence[str], timeout: float = 5.0,
                      session: Optional[requests.Session] = None) -> str:
    """Use the explicit IP when given, otherwise detect it.

    Raises:
        PrerequisiteError: if no IP was supplied and none could be detected
    """
    if explicit_ip:
        return explicit_ip

    public_ip = detect_public_ip(endpoints, timeout=timeout, session=session)
    if not public_ip:
        raise PrerequisiteError("Could not detect public IP. Pass it with --ip <your-ip>")
    return public_ip


def detect_os_release(path: Path = OS_RELEASE_PATH) -> Dict[str, str]:
    """Parse /etc/os-release into a dict (empty when the file is missing)."""
    if not path.exists():
        return {}

    info: Dict[str, str] = {}
    with open(path, encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if '=' in line and not line.startswith('#'):
                key, value = line.split('=', 1)
                info[key] = value.strip('"').strip("'")
    return info


@dataclass
class ContainerRuntime:
    """A usable docker CLI: the command prefix to invoke it and its version."""
    command: List[str] = field(default_factory=lambda: ['docker'])
    version: str = ""

    @property
    def uses_sudo(self) -> bool:
        return self.command[:1] == ['sudo']


def docker_daemon_reachable() -> bool:
    """Whether the daemon answers as the current user (no sudo)."""
    try:
        client = docker.from_env()
        try:
            return bool(client.ping())
        finally:
            client.close()
    except docker.errors.DockerException as e:
        logger.debug(f"Docker daemon not reachable as current user: {e}")
        return False


def docker_installed(runner: CommandRunner) -> bool:
    return runner.which('docker') is not None


def check_container_runtime(runner: CommandRunner, allow_sudo: bool = True,
                            daemon_check=docker_daemon_reachable) -> ContainerRuntime:
    """Verify Docker and the compose v2 plugin are available.

    Args:
        runner: Command runner
        allow_sudo: Fall back to 'sudo docker' when the daemon is not
            reachable as the current user
        daemon_check: Callable reporting daemon reachability

    Raises:
        PrerequisiteError: if docker or the compose plugin is missing
    """
    logger.info("Checking prerequisites...")

    if not docker_installed(runner):
        raise PrerequisiteError(
            "Docker is not installed. Install it from https://docs.docker.com/engine/install/"
        )

    command = ['docker']
    if allow_sudo and not runner.is_root and not daemon_check():
        logger.warning("⚠️  Docker daemon not accessible as current user, using sudo for docker commands")
        command = ['sudo', 'docker']

    try:
        runner.run([*command, 'compose', 'version'], capture=True)
    except (subprocess.CalledProcessError, OSError):
        raise PrerequisiteError(
            "Docker Compose (v2) is not available. Update Docker or install the compose plugin."
        )

    version = ""
    try:
        result = runner.run([*command, '--version'], capture=True)
        # "Docker version 24.0.7, build afdd53b"
        parts = result.stdout.split()
        version = parts[2].rstrip(',') if len(parts) > 2 else result.stdout.strip()
    except (subprocess.CalledProcessError, OSError) as e:
        logger.debug(f"Could not read docker version: {e}")

    logger.info(f"✅ Docker {version or '(unknown version)'} found.")
    return ContainerRuntime(command=command, version=version)
