"""
Host preparation strategies.

Which package manager and firewall manager a host has is looked up once and
mapped onto one of a closed set of strategies:

- Docker: apt (Debian/Ubuntu), yum (RHEL/Amazon Linux), or the upstream
  convenience script when neither is present
- Firewall: ufw, firewalld, or none (operator is warned)
"""
import getpass
import logging
import platform
import subprocess
from typing import Dict, List, Optional, Tuple

import requests

from somleng_deploy.detection import detect_os_release
from somleng_deploy.exceptions import PrerequisiteError
from somleng_deploy.utils.commands import CommandRunner

logger = logging.getLogger(__name__)

DOCKER_KEYRING = "/etc/apt/keyrings/docker.gpg"
DOCKER_APT_LIST = "/etc/apt/sources.list.d/docker.list"
COMPOSE_PLUGIN_DIR = "/usr/local/lib/docker/cli-plugins"
CONVENIENCE_SCRIPT_URL = "https://get.docker.com"

# (port, protocol, firewalld service name or None)
PLATFORM_PORTS: Tuple[Tuple[int, str, Optional[str]], ...] = (
    (22, "tcp", "ssh"),
    (80, "tcp", "http"),
    (443, "tcp", "https"),
    (5060, "udp", None),
)


class DockerInstaller:
    """Base class for Docker installation strategies."""

    name = "base"

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def install(self) -> None:
        raise NotImplementedError

    def _sudo_shell(self) -> str:
        return " ".join(self.runner.sudo())


class AptDockerInstaller(DockerInstaller):
    """Debian / Ubuntu: Docker's apt repository with a dedicated keyring."""

    name = "apt"

    def __init__(self, runner: CommandRunner, os_release: Optional[Dict[str, str]] = None):
        super().__init__(runner)
        self.os_release = os_release if os_release is not None else detect_os_release()

    def install(self) -> None:
        distro = self.os_release.get('ID')
        codename = self.os_release.get('VERSION_CODENAME')
        if not distro or not codename:
            raise PrerequisiteError("Cannot determine distribution from /etc/os-release for the Docker apt repository")

        sudo = self.runner.sudo()
        sudo_sh = self._sudo_shell()

        self.runner.run([*sudo, 'apt-get', 'update', '-qq'])
        self.runner.run([*sudo, 'apt-get', 'install', '-y', '-qq', 'ca-certificates', 'curl', 'gnupg'])
        self.runner.run([*sudo, 'install', '-m', '0755', '-d', '/etc/apt/keyrings'])
        self.runner.run_shell(
            f"curl -fsSL https://download.docker.com/linux/{distro}/gpg | "
            f"{sudo_sh} gpg --dearmor --yes -o {DOCKER_KEYRING}"
        )
        self.runner.run([*sudo, 'chmod', 'a+r', DOCKER_KEYRING])

        arch = self.runner.run(['dpkg', '--print-architecture'], capture=True).stdout.strip()
        repo_line = (
            f"deb [arch={arch} signed-by={DOCKER_KEYRING}] "
            f"https://download.docker.com/linux/{distro} {codename} stable"
        )
        self.runner.run_shell(f'echo "{repo_line}" | {sudo_sh} tee {DOCKER_APT_LIST} > /dev/null')

        self.runner.run([*sudo, 'apt-get', 'update', '-qq'])
        self.runner.run([*sudo, 'apt-get', 'install', '-y', '-qq',
                         'docker-ce', 'docker-ce-cli', 'containerd.io', 'docker-compose-plugin'])


class YumDockerInstaller(DockerInstaller):
    """RHEL / Amazon Linux: distro docker package plus the compose plugin binary."""

    name = "yum"

    def __init__(self, runner: CommandRunner, release_url: str,
                 session: Optional[requests.Session] = None):
        super().__init__(runner)
        self.release_url = release_url
        self.session = session or requests

    def latest_compose_version(self) -> str:
        response = self.session.get(self.release_url, timeout=10)
        response.raise_for_status()
        tag = response.json()['tag_name']
        return tag[1:] if tag.startswith('v') else tag

    def install(self) -> None:
        sudo = self.runner.sudo()

        self.runner.run([*sudo, 'yum', 'install', '-y', 'docker'])
        self.runner.run([*sudo, 'systemctl', 'start', 'docker'])
        self.runner.run([*sudo, 'systemctl', 'enable', 'docker'])

        self.runner.run([*sudo, 'mkdir', '-p', COMPOSE_PLUGIN_DIR])
        try:
            version = self.latest_compose_version()
        except (requests.RequestException, KeyError, ValueError) as e:
            raise PrerequisiteError(f"Could not determine the latest Docker Compose release: {e}")

        target = f"{COMPOSE_PLUGIN_DIR}/docker-compose"
        url = (f"https://github.com/docker/compose/releases/download/v{version}/"
               f"docker-compose-linux-{platform.machine()}")
        logger.info(f"Installing Docker Compose plugin v{version}")
        self.runner.run([*sudo, 'curl', '-SL', url, '-o', target])
        self.runner.run([*sudo, 'chmod', '+x', target])


class ConvenienceScriptInstaller(DockerInstaller):
    """Fallback for hosts without apt-get or yum."""

    name = "convenience-script"

    def install(self) -> None:
        logger.info("Falling back to convenience script...")
        self.runner.run_shell(f"curl -fsSL {CONVENIENCE_SCRIPT_URL} | sh")


def select_docker_installer(runner: CommandRunner, release_url: str,
                            os_release: Optional[Dict[str, str]] = None) -> DockerInstaller:
    """Pick the installer strategy for this host based on the package manager present."""
    if runner.which('apt-get'):
        return AptDockerInstaller(runner, os_release=os_release)
    if runner.which('yum'):
        return YumDockerInstaller(runner, release_url=release_url)
    return ConvenienceScriptInstaller(runner)


def add_user_to_docker_group(runner: CommandRunner, user: Optional[str] = None) -> bool:
    """Add a non-root user to the docker group. Returns True when a change was made."""
    if runner.is_root:
        return False

    user = user or getpass.getuser()
    runner.run([*runner.sudo(), 'usermod', '-aG', 'docker', user])
    logger.warning(f"⚠️  Added {user} to docker group. Using sudo for remaining commands.")
    return True


def ensure_docker(runner: CommandRunner, release_url: str) -> Optional[str]:
    """Install Docker when missing.

    Returns:
        Name of the installer strategy used, or None if Docker was present
    """
    if runner.which('docker'):
        logger.info("✅ Docker already installed")
        return None

    installer = select_docker_installer(runner, release_url)
    logger.info(f"Installing Docker using the {installer.name} strategy...")
    try:
        installer.install()
    except subprocess.CalledProcessError as e:
        raise PrerequisiteError(f"Docker installation failed ({installer.name}): {e}")

    add_user_to_docker_group(runner)
    logger.info("✅ Docker installed")
    return installer.name


class FirewallManager:
    """Base class for firewall strategies. Rules are applied best effort."""

    name = "none"

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def commands(self) -> List[List[str]]:
        return []

    def open_ports(self) -> bool:
        """Apply every rule, logging failures. Returns True if all succeeded."""
        all_ok = True
        for command in self.commands():
            try:
                result = self.runner.run(command, check=False, capture=True)
            except OSError as e:
                logger.warning(f"⚠️  Firewall command failed: {' '.join(command)} ({e})")
                all_ok = False
                continue
            if not result.ok:
                logger.warning(f"⚠️  Firewall command failed: {' '.join(command)} (exit {result.returncode})")
                all_ok = False
        return all_ok

    def describe(self) -> str:
        ports = ", ".join(f"{port}/{proto}" if proto == "udp" else str(port)
                          for port, proto, _ in PLATFORM_PORTS)
        return f"{self.name}: ports {ports} opened"


class UfwFirewall(FirewallManager):
    name = "UFW"

    def commands(self) -> List[List[str]]:
        sudo = self.runner.sudo()
        rules = [[*sudo, 'ufw', 'allow', f"{port}/{proto}"] for port, proto, _ in PLATFORM_PORTS]
        return rules + [[*sudo, 'ufw', '--force', 'enable']]


class FirewalldFirewall(FirewallManager):
    name = "firewalld"

    def commands(self) -> List[List[str]]:
        sudo = self.runner.sudo()
        rules = []
        for port, proto, service in PLATFORM_PORTS:
            if service:
                rules.append([*sudo, 'firewall-cmd', '--permanent', f"--add-service={service}"])
            else:
                rules.append([*sudo, 'firewall-cmd', '--permanent', f"--add-port={port}/{proto}"])
        return rules + [[*sudo, 'firewall-cmd', '--reload']]


class NoFirewall(FirewallManager):
    name = "none"

    def open_ports(self) -> bool:
        logger.warning("⚠️  No firewall manager detected. Make sure ports 80, 443, 5060/udp are open.")
        return False

    def describe(self) -> str:
        return "No firewall manager detected"


def select_firewall(runner: CommandRunner) -> FirewallManager:
    if runner.which('ufw'):
        return UfwFirewall(runner)
    if runner.which('firewall-cmd'):
        return FirewalldFirewall(runner)
    return NoFirewall(runner)
