import pytest

from somleng_deploy.exceptions import PrerequisiteError
from somleng_deploy.installers import (
    AptDockerInstaller,
    ConvenienceScriptInstaller,
    FirewalldFirewall,
    NoFirewall,
    UfwFirewall,
    YumDockerInstaller,
    add_user_to_docker_group,
    ensure_docker,
    select_docker_installer,
    select_firewall,
)
from tests.fixtures.runner_fixtures import FakeRunner

RELEASE_URL = "https://api.github.com/repos/docker/compose/releases/latest"
UBUNTU = {"ID": "ubuntu", "VERSION_CODENAME": "jammy"}


class ReleaseResponse:
    def raise_for_status(self):
        pass

    def json(self):
        return {"tag_name": "v2.27.0"}


class ReleaseSession:
    def get(self, url, timeout=None):
        return ReleaseResponse()


@pytest.mark.parametrize("available, expected", [
    (("apt-get", "yum"), AptDockerInstaller),
    (("yum",), YumDockerInstaller),
    ((), ConvenienceScriptInstaller),
])
def test_select_docker_installer(available, expected):
    runner = FakeRunner(available=available)
    assert isinstance(select_docker_installer(runner, RELEASE_URL, os_release=UBUNTU), expected)


def test_apt_installer_uses_docker_repository():
    runner = FakeRunner(is_root=False)
    runner.respond(["dpkg", "--print-architecture"], stdout="amd64\n")

    AptDockerInstaller(runner, os_release=UBUNTU).install()

    assert runner.ran("sudo", "apt-get", "install", "-y", "-qq", "ca-certificates", "curl", "gnupg")
    assert runner.ran("https://download.docker.com/linux/ubuntu jammy stable")
    assert runner.ran("arch=amd64")
    assert runner.ran("docker-ce", "docker-ce-cli", "containerd.io", "docker-compose-plugin")


def test_apt_installer_needs_os_release():
    with pytest.raises(PrerequisiteError):
        AptDockerInstaller(FakeRunner(), os_release={}).install()


def test_yum_installer_fetches_latest_compose_plugin():
    runner = FakeRunner()
    installer = YumDockerInstaller(runner, RELEASE_URL, session=ReleaseSession())

    installer.install()

    assert runner.ran("yum", "install", "-y", "docker")
    assert runner.ran("systemctl", "enable", "docker")
    assert runner.ran("https://github.com/docker/compose/releases/download/v2.27.0/docker-compose-linux-")
    assert runner.ran("chmod", "+x", "/usr/local/lib/docker/cli-plugins/docker-compose")


def test_ensure_docker_skips_when_present():
    runner = FakeRunner(available=("docker",))
    assert ensure_docker(runner, RELEASE_URL) is None
    assert runner.calls == []


def test_ensure_docker_falls_back_to_convenience_script():
    runner = FakeRunner(available=())

    assert ensure_docker(runner, RELEASE_URL) == "convenience-script"
    assert runner.ran("curl -fsSL https://get.docker.com | sh")


def test_ensure_docker_failure_is_a_prerequisite_error():
    runner = FakeRunner(available=())
    runner.respond(["get.docker.com"], returncode=1)

    with pytest.raises(PrerequisiteError, match="convenience-script"):
        ensure_docker(runner, RELEASE_URL)


def test_non_root_user_joins_docker_group():
    runner = FakeRunner(is_root=False)
    assert add_user_to_docker_group(runner, user="deployer")
    assert runner.ran("sudo", "usermod", "-aG", "docker", "deployer")


def test_root_user_is_not_added_to_docker_group():
    runner = FakeRunner(is_root=True)
    assert not add_user_to_docker_group(runner, user="root")
    assert runner.calls == []


@pytest.mark.parametrize("available, expected", [
    (("ufw", "firewall-cmd"), UfwFirewall),
    (("firewall-cmd",), FirewalldFirewall),
    ((), NoFirewall),
])
def test_select_firewall(available, expected):
    assert isinstance(select_firewall(FakeRunner(available=available)), expected)


def test_ufw_opens_platform_ports():
    runner = FakeRunner()

    assert UfwFirewall(runner).open_ports()
    assert runner.calls == [
        ["ufw", "allow", "22/tcp"],
        ["ufw", "allow", "80/tcp"],
        ["ufw", "allow", "443/tcp"],
        ["ufw", "allow", "5060/udp"],
        ["ufw", "--force", "enable"],
    ]


def test_firewalld_uses_services_and_ports():
    runner = FakeRunner(is_root=False)

    assert FirewalldFirewall(runner).open_ports()
    assert runner.ran("sudo", "firewall-cmd", "--permanent", "--add-service=https")
    assert runner.ran("sudo", "firewall-cmd", "--permanent", "--add-port=5060/udp")
    assert runner.calls[-1] == ["sudo", "firewall-cmd", "--reload"]


def test_failed_firewall_rule_does_not_stop_the_rest():
    runner = FakeRunner()
    runner.respond(["ufw", "allow", "80/tcp"], returncode=1)

    assert not UfwFirewall(runner).open_ports()
    assert runner.ran("ufw", "allow", "5060/udp")
    assert runner.ran("ufw", "--force", "enable")


def test_no_firewall_only_warns(caplog):
    runner = FakeRunner()
    assert not NoFirewall(runner).open_ports()
    assert runner.calls == []
    assert "No firewall manager detected" in caplog.text
