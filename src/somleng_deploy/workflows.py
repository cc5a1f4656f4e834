"""
Local setup and remote install flows.

Both flows are a fixed sequence of stages; a DeploymentConfig read back from
the materialized .env is passed from validation onwards, and nothing is sent
to Docker before validation has passed.
"""
import logging
from pathlib import Path
from typing import Callable, Optional, Union

import click

from somleng_deploy.compose import BootstrapResult, ComposeDriver
from somleng_deploy.config.settings import Settings, get_settings
from somleng_deploy.detection import ContainerRuntime, check_container_runtime, resolve_public_ip
from somleng_deploy.env_file import (
    DOMAIN_KEY,
    RTP_IP_KEY,
    SIP_IP_KEY,
    DeploymentConfig,
    MaterializeResult,
    materialize_env_file,
)
from somleng_deploy.exceptions import ConfigurationError, OrchestratorError
from somleng_deploy.health import verify_deployment
from somleng_deploy.installers import ensure_docker, select_firewall
from somleng_deploy.repository import sync_repository
from somleng_deploy.summary import DeploymentSummary, dns_instructions, env_created_banner
from somleng_deploy.utils.commands import CommandRunner
from somleng_deploy.utils.decorators import log_operation
from somleng_deploy.validation import validate_config

logger = logging.getLogger(__name__)


class DeploymentFlow:
    """Stages shared by both flows."""

    def __init__(self, settings: Optional[Settings] = None, runner: Optional[CommandRunner] = None,
                 interactive: bool = True, strict_bootstrap: bool = False,
                 echo: Callable[[str], None] = click.echo,
                 pause: Callable[[str], None] = None,
                 prompt: Callable[[str], str] = None):
        self.settings = settings or get_settings()
        self.runner = runner or CommandRunner()
        self.interactive = interactive
        self.strict_bootstrap = strict_bootstrap
        self.echo = echo
        self.pause = pause or (lambda message: click.pause(message))
        self.prompt = prompt or (lambda message: click.prompt(message, default="", show_default=False))

    def env_paths(self, deploy_dir: Path):
        return deploy_dir / self.settings.env_template_name, deploy_dir / self.settings.env_file_name

    @log_operation("Validate configuration")
    def load_and_validate(self, env_path: Path) -> DeploymentConfig:
        try:
            config = DeploymentConfig.from_env_file(env_path)
        except ConfigurationError:
            raise ConfigurationError(f"{env_path.name} not found in {env_path.parent}")
        return validate_config(config, self.settings.placeholder_domain, env_path.name)

    def driver(self, deploy_dir: Path, runtime: ContainerRuntime) -> ComposeDriver:
        return ComposeDriver(deploy_dir, self.settings.compose_file,
                             docker_command=runtime.command, runner=self.runner)

    @log_operation("Bootstrap database")
    def bootstrap(self, driver: ComposeDriver) -> BootstrapResult:
        result = driver.run_bootstrap(self.settings.bootstrap_service, self.settings.bootstrap_profile)
        if result.output:
            self.echo(result.output.rstrip("\n"))

        if result.succeeded:
            logger.info("✅ Bootstrap job completed")
        elif self.strict_bootstrap:
            raise OrchestratorError(
                f"Bootstrap job exited with status {result.returncode}",
                returncode=result.returncode,
                output=result.output,
            )
        else:
            logger.warning(
                f"⚠️  Bootstrap job exited with status {result.returncode}; "
                "continuing (the platform may already be bootstrapped)"
            )
        return result

    @log_operation("Start services")
    def bring_up(self, driver: ComposeDriver) -> BootstrapResult:
        driver.pull()
        result = self.bootstrap(driver)
        driver.up(wait=True)
        return result


class LocalSetup(DeploymentFlow):
    """Set up the platform from an existing deploy directory."""

    def __init__(self, deploy_dir: Union[str, Path], **kwargs):
        super().__init__(**kwargs)
        self.deploy_dir = Path(deploy_dir)

    @log_operation("Materialize configuration")
    def materialize(self) -> MaterializeResult:
        template, target = self.env_paths(self.deploy_dir)
        result = materialize_env_file(template, target)
        if result.created:
            self.echo(env_created_banner(target.name))
            if self.interactive:
                self.pause(f"Press Enter after editing {target.name} to continue (or Ctrl+C to abort)...")
        return result

    def run(self) -> DeploymentSummary:
        runtime = check_container_runtime(self.runner)
        materialized = self.materialize()
        config = self.load_and_validate(materialized.path)

        driver = self.driver(self.deploy_dir, runtime)
        bootstrap = self.bring_up(driver)

        return DeploymentSummary(
            flow="setup",
            domain=config.domain,
            sip_ip=config.sip_ip,
            compose_file=self.settings.compose_file,
            deploy_dir=self.deploy_dir,
            env_path=materialized.path,
            credentials=bootstrap.credentials,
            bootstrap_succeeded=bootstrap.succeeded,
        )


class RemoteInstall(DeploymentFlow):
    """Prepare a fresh host and install the platform on it."""

    def __init__(self, domain: Optional[str] = None, public_ip: Optional[str] = None,
                 repo_url: Optional[str] = None, branch: Optional[str] = None,
                 install_dir: Optional[Union[str, Path]] = None, assume_yes: bool = False,
                 sleep: Callable[[float], None] = None, **kwargs):
        super().__init__(**kwargs)
        self.domain = domain
        self.public_ip = public_ip
        self.repo_url = repo_url or self.settings.repo_url
        self.branch = branch or self.settings.branch
        self.install_dir = Path(install_dir or self.settings.install_dir)
        self.assume_yes = assume_yes
        self.sleep = sleep

    @log_operation("Detect environment")
    def detect_environment(self) -> str:
        public_ip = resolve_public_ip(
            self.public_ip,
            self.settings.ip_echo_endpoints,
            timeout=self.settings.ip_detection_timeout,
        )
        logger.info(f"✅ Public IP: {public_ip}")
        return public_ip

    def resolve_domain(self) -> str:
        domain = self.domain
        if not domain and self.interactive:
            domain = self.prompt("Enter your domain name (e.g., chorus-ai.co)").strip()
        if not domain:
            raise ConfigurationError("Domain is required. Pass it with --domain <your-domain>")
        logger.info(f"✅ Domain: {domain}")
        return domain

    def confirm_dns(self, domain: str, public_ip: str) -> None:
        self.echo(dns_instructions(domain, public_ip))
        if self.interactive and not self.assume_yes:
            self.pause("Press Enter once DNS is configured (or Ctrl+C to abort)...")

    @log_operation("Prepare container runtime")
    def prepare_runtime(self) -> ContainerRuntime:
        ensure_docker(self.runner, self.settings.compose_release_url)
        return check_container_runtime(self.runner, allow_sudo=True)

    @log_operation("Materialize configuration")
    def materialize(self, deploy_dir: Path, domain: str, public_ip: str) -> MaterializeResult:
        template, target = self.env_paths(deploy_dir)
        overrides = {DOMAIN_KEY: domain, SIP_IP_KEY: public_ip, RTP_IP_KEY: public_ip}
        return materialize_env_file(template, target, overrides)

    @log_operation("Configure firewall")
    def configure_firewall(self) -> None:
        firewall = select_firewall(self.runner)
        logger.info("Configuring firewall...")
        if firewall.open_ports():
            logger.info(f"✅ {firewall.describe()}")

    def run(self) -> DeploymentSummary:
        public_ip = self.detect_environment()
        domain = self.resolve_domain()
        self.confirm_dns(domain, public_ip)

        runtime = self.prepare_runtime()
        deploy_dir = sync_repository(self.runner, self.repo_url, self.branch,
                                     self.install_dir, self.settings.deploy_subdir)

        materialized = self.materialize(deploy_dir, domain, public_ip)
        config = self.load_and_validate(materialized.path)
        self.configure_firewall()

        driver = self.driver(deploy_dir, runtime)
        bootstrap = self.bring_up(driver)

        verify_kwargs = {'sleep': self.sleep} if self.sleep else {}
        report = verify_deployment(driver, delay=self.settings.health_check_delay, **verify_kwargs)

        return DeploymentSummary(
            flow="install",
            domain=config.domain,
            sip_ip=config.sip_ip,
            compose_file=self.settings.compose_file,
            deploy_dir=deploy_dir,
            env_path=materialized.path,
            credentials=bootstrap.credentials,
            bootstrap_succeeded=bootstrap.succeeded,
            health=report,
            health_checked=True,
        )
