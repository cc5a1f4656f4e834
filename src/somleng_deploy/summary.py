"""Operator-facing banners printed around the setup and install flows."""
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from somleng_deploy.compose import BootstrapCredentials
from somleng_deploy.health import HealthReport, UNVERIFIED_MESSAGE

RULE = "=" * 60


@dataclass
class DeploymentSummary:
    flow: str  # "setup" or "install"
    domain: str
    sip_ip: str
    compose_file: str
    deploy_dir: Path
    env_path: Path
    credentials: BootstrapCredentials
    bootstrap_succeeded: bool = True
    health: Optional[HealthReport] = None
    health_checked: bool = False


def env_created_banner(env_name: str = ".env") -> str:
    return "\n".join([
        "",
        RULE,
        f"  {env_name} file created with auto-generated secrets.",
        "",
        f"  You MUST edit {env_name} and set these values before continuing:",
        "    - DOMAIN           (your domain name)",
        "    - FS_EXTERNAL_SIP_IP  (this server's public IP)",
        "    - FS_EXTERNAL_RTP_IP  (this server's public IP)",
        RULE,
        "",
    ])


def dns_instructions(domain: str, public_ip: str) -> str:
    return "\n".join([
        "",
        RULE,
        "  Before continuing, set up these DNS records:",
        "",
        f"    A    {domain}        ->  {public_ip}",
        f"    A    *.{domain}      ->  {public_ip}",
        "",
        "  The wildcard record enables:",
        f"    apisip.{domain}              - REST API",
        f"    appsip.{domain}              - Main dashboard",
        f"    <carrier>.appsip.{domain}    - Carrier dashboards",
        f"    verifysip.{domain}           - Verify API",
        RULE,
        "",
    ])


def _health_line(summary: DeploymentSummary) -> List[str]:
    if not summary.health_checked:
        return []
    if summary.health is None:
        return [f"  {UNVERIFIED_MESSAGE}", ""]
    return [f"  {line}" for line in summary.health.summary().splitlines()] + [""]


def _setup_lines(summary: DeploymentSummary) -> List[str]:
    creds = summary.credentials
    lines = [
        f"  Dashboard:  https://{summary.domain}",
        f"  API Base:   https://{summary.domain}/api",
        f"  SIP:        {summary.sip_ip}:5060 (UDP)",
        "",
    ]
    if creds:
        lines += [
            f"  Account SID:  {creds.account_sid}",
            f"  Auth Token:   {creds.auth_token or ''}",
            f"  Phone Number: {creds.phone_number or ''}",
            "",
        ]
    lines += [
        "  Useful commands:",
        f"    docker compose -f {summary.compose_file} ps      # Check service status",
        f"    docker compose -f {summary.compose_file} logs -f  # Follow logs",
        f"    docker compose -f {summary.compose_file} down     # Stop all services",
    ]
    return lines


def _install_lines(summary: DeploymentSummary) -> List[str]:
    creds = summary.credentials
    domain = summary.domain
    lines = [
        f"  Dashboard:       https://appsip.{domain}",
        f"  Carrier Login:   https://my-carrier.appsip.{domain}",
        f"  API Endpoint:    https://apisip.{domain}",
        f"  SIP:             {summary.sip_ip}:5060 (UDP)",
        "",
    ]
    if creds:
        lines += [
            f"  Account SID:     {creds.account_sid}",
            f"  Auth Token:      {creds.auth_token or ''}",
            "",
            "  Test the API:",
            '    curl -u "$ACCOUNT_SID:$AUTH_TOKEN" \\',
            f"      https://apisip.{domain}/2010-04-01/Accounts/{creds.account_sid}.json",
            "",
        ]
    lines += _health_line(summary)
    lines += [
        "  Manage:",
        f"    cd {summary.deploy_dir}",
        f"    docker compose -f {summary.compose_file} ps        # Status",
        f"    docker compose -f {summary.compose_file} logs -f    # Logs",
        f"    docker compose -f {summary.compose_file} down       # Stop",
        f"    docker compose -f {summary.compose_file} up -d      # Start",
        "",
        f"  Credentials saved in: {summary.env_path}",
    ]
    return lines


def render_summary(summary: DeploymentSummary) -> str:
    lines = ["", RULE, "  Somleng Platform is running!", RULE, ""]
    if not summary.bootstrap_succeeded:
        lines += ["  WARNING: the database bootstrap job did not succeed, see output above.", ""]
    if summary.flow == "install":
        lines += _install_lines(summary)
    else:
        lines += _setup_lines(summary)
    lines += [RULE]
    return "\n".join(lines)
