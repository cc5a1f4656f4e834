import logging

import pytest
from pydantic import ValidationError

from somleng_deploy.config.settings import Settings
from somleng_deploy.utils.decorators import log_operation


def test_defaults():
    settings = Settings()
    assert settings.compose_file == "docker-compose.production.yml"
    assert settings.placeholder_domain == "somleng.example.com"
    assert settings.repo_url == "https://github.com/somleng/somleng-project.git"
    assert settings.branch == "main"
    assert settings.install_dir == "/opt/somleng"
    assert settings.ip_echo_endpoints[0] == "https://checkip.amazonaws.com"
    assert settings.ip_detection_timeout == 5.0


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SOMLENG_DEPLOY_COMPOSE_FILE", "compose.yml")
    monkeypatch.setenv("SOMLENG_DEPLOY_LOG_LEVEL", "debug")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "ap-southeast-1")

    settings = Settings()

    assert settings.compose_file == "compose.yml"
    assert settings.log_level == "DEBUG"
    assert settings.aws_region == "ap-southeast-1"


def test_invalid_log_level():
    with pytest.raises(ValidationError):
        Settings(log_level="LOUD")


def test_display_dict_lists_repository():
    display = Settings(branch="develop").as_display_dict()
    assert display["Repository"].endswith("(develop)")


def test_log_operation_logs_and_reraises(caplog):
    @log_operation("Explode")
    def explode():
        raise RuntimeError("boom")

    with caplog.at_level(logging.INFO), pytest.raises(RuntimeError):
        explode()

    assert "Starting: Explode" in caplog.text
    assert "Failed: Explode" in caplog.text


def test_log_operation_returns_result(caplog):
    @log_operation("Add")
    def add(a, b):
        return a + b

    with caplog.at_level(logging.INFO):
        assert add(1, 2) == 3
    assert "Completed: Add" in caplog.text
