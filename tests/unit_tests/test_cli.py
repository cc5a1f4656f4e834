import json

import pytest
from botocore.exceptions import NoCredentialsError
from click.testing import CliRunner

from somleng_deploy.cli import cli
from somleng_deploy.config.settings import get_settings
from tests.consts import CONFIGURED_ENV, TEST_CLUSTER_IDENTIFIER, TEST_DOMAIN
from tests.fixtures.runner_fixtures import FakeRunner

BACKUP_ARGS = [
    "--region", "us-east-1",
    "--database-name", "somleng_production",
    "--cluster-identifier", TEST_CLUSTER_IDENTIFIER,
    "--password-parameter", "/somleng/db/password",
]


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def command_runner(monkeypatch):
    runner = FakeRunner()
    monkeypatch.setattr("somleng_deploy.workflows.CommandRunner", lambda: runner)
    monkeypatch.setattr("somleng_deploy.cli.CommandRunner", lambda: runner)
    return runner


def test_show_config(cli_runner):
    result = cli_runner.invoke(cli, ["show-config"])

    assert result.exit_code == 0
    assert "Compose File: docker-compose.production.yml" in result.output


def test_help_short_option(cli_runner):
    result = cli_runner.invoke(cli, ["install", "-h"])

    assert result.exit_code == 0
    assert "--domain" in result.output
    assert "--strict-bootstrap" in result.output


def test_setup_with_placeholder_domain_exits_1(cli_runner, deploy_dir, command_runner):
    result = cli_runner.invoke(cli, ["setup", "--dir", str(deploy_dir), "--no-input"])

    assert result.exit_code == 1
    assert "[ERROR] DOMAIN is not set in .env" in result.output
    assert not command_runner.ran("up", "-d")


def test_setup_prints_summary(cli_runner, deploy_dir, command_runner):
    (deploy_dir / ".env").write_text(CONFIGURED_ENV)

    result = cli_runner.invoke(cli, ["setup", "--dir", str(deploy_dir), "--no-input"])

    assert result.exit_code == 0
    assert "Somleng Platform is running!" in result.output
    assert f"https://{TEST_DOMAIN}/api" in result.output


def test_verify_reports_unhealthy_services(cli_runner, tmp_path, command_runner):
    command_runner.respond(["ps", "--format", "json"],
                           stdout='{"Service": "freeswitch", "State": "running", "Health": "unhealthy"}\n')

    result = cli_runner.invoke(cli, ["verify", "--dir", str(tmp_path)])

    assert result.exit_code == 1
    assert "UNHEALTHY: freeswitch" in result.output


def test_ps_lists_services(cli_runner, tmp_path, command_runner):
    command_runner.respond(["ps", "--format", "json"],
                           stdout='{"Service": "api", "State": "running", "Health": "healthy"}\n')

    result = cli_runner.invoke(cli, ["ps", "--dir", str(tmp_path)])

    assert result.exit_code == 0
    assert "api" in result.output
    assert "healthy" in result.output


def test_down(cli_runner, tmp_path, command_runner):
    result = cli_runner.invoke(cli, ["down", "--dir", str(tmp_path)])

    assert result.exit_code == 0
    assert command_runner.ran("compose", "-f", "docker-compose.production.yml", "down")


def test_backup_plan_rejects_instance_type(cli_runner):
    result = cli_runner.invoke(cli, ["backup-instance", "plan", "--instance-type", "m5.large", *BACKUP_ARGS])

    assert result.exit_code == 1
    assert "[ERROR]" in result.output
    assert "instance_type" in result.output


def test_backup_plan_prints_resources(cli_runner):
    result = cli_runner.invoke(cli, [
        "backup-instance", "plan", "--instance-type", "t4g.small", "--backup", *BACKUP_ARGS,
        "--additional-security-group", "sg-0123456789abcdef0",
    ])

    assert result.exit_code == 0
    plan = json.loads(result.output)
    addresses = [resource["address"] for resource in plan["resources"]]
    assert "aws_instance.backup" in addresses
    instance = next(r for r in plan["resources"] if r["address"] == "aws_instance.backup")
    assert instance["attributes"]["architecture"] == "arm64"
    additional = next(r for r in plan["resources"] if r["address"] == "aws_security_group_rule.additional_ingress")
    assert additional["count"] == 1


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_invalid_log_level_setting_exits_1(cli_runner, monkeypatch, fresh_settings):
    monkeypatch.setenv("SOMLENG_DEPLOY_LOG_LEVEL", "verbose")

    result = cli_runner.invoke(cli, ["show-config"])

    assert result.exit_code == 1
    assert "[ERROR] Invalid input" in result.output
    assert "log_level" in result.output
    assert isinstance(result.exception, SystemExit)


def test_backup_apply_without_credentials_exits_1(cli_runner, mocked_aws, monkeypatch):
    def no_credentials(self):
        raise NoCredentialsError()

    monkeypatch.setattr("somleng_deploy.aws.backup_instance.BackupInstanceManager.account_id", no_credentials)

    result = cli_runner.invoke(cli, ["backup-instance", "apply", "--instance-type", "t3.micro", "--no-wait",
                                     *BACKUP_ARGS])

    assert result.exit_code == 1
    assert "[ERROR] Unable to locate credentials" in result.output
    assert isinstance(result.exception, SystemExit)
