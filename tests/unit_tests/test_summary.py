from pathlib import Path

from somleng_deploy.compose import BootstrapCredentials
from somleng_deploy.health import UNVERIFIED_MESSAGE, evaluate_health
from somleng_deploy.summary import DeploymentSummary, dns_instructions, render_summary
from tests.consts import TEST_DOMAIN, TEST_PUBLIC_IP


def summary(**kwargs):
    values = dict(
        flow="install",
        domain=TEST_DOMAIN,
        sip_ip=TEST_PUBLIC_IP,
        compose_file="docker-compose.production.yml",
        deploy_dir=Path("/opt/somleng/deploy"),
        env_path=Path("/opt/somleng/deploy/.env"),
        credentials=BootstrapCredentials(account_sid="AC123", auth_token="tok456"),
    )
    values.update(kwargs)
    return DeploymentSummary(**values)


def test_install_summary():
    text = render_summary(summary(health_checked=True, health=evaluate_health([])))

    assert f"https://appsip.{TEST_DOMAIN}" in text
    assert f"https://my-carrier.appsip.{TEST_DOMAIN}" in text
    assert f"{TEST_PUBLIC_IP}:5060 (UDP)" in text
    assert "/2010-04-01/Accounts/AC123.json" in text
    assert "All services healthy" in text
    assert "Credentials saved in: /opt/somleng/deploy/.env" in text


def test_install_summary_without_status():
    text = render_summary(summary(health_checked=True, health=None))
    assert UNVERIFIED_MESSAGE in text


def test_setup_summary():
    text = render_summary(summary(flow="setup"))

    assert f"Dashboard:  https://{TEST_DOMAIN}" in text
    assert f"https://{TEST_DOMAIN}/api" in text
    assert "Account SID:  AC123" in text
    assert "WARNING" not in text


def test_missing_credentials_are_omitted():
    text = render_summary(summary(flow="setup", credentials=BootstrapCredentials()))
    assert "Account SID" not in text


def test_failed_bootstrap_is_called_out():
    text = render_summary(summary(bootstrap_succeeded=False, credentials=BootstrapCredentials()))
    assert "WARNING: the database bootstrap job did not succeed" in text


def test_dns_instructions():
    text = dns_instructions(TEST_DOMAIN, TEST_PUBLIC_IP)
    assert f"*.{TEST_DOMAIN}" in text
    assert TEST_PUBLIC_IP in text
