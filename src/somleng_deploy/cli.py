# cli.py
import json
import logging
import sys
from functools import wraps
from pathlib import Path

import click
from pydantic import ValidationError

from somleng_deploy.compose import ComposeDriver
from somleng_deploy.config.settings import get_settings
from somleng_deploy.detection import check_container_runtime
from somleng_deploy.exceptions import DeployError
from somleng_deploy.health import UNVERIFIED_MESSAGE, verify_deployment
from somleng_deploy.summary import render_summary
from somleng_deploy.utils.commands import CommandRunner

logger = logging.getLogger(__name__)

CONTEXT_SETTINGS = {'help_option_names': ['-h', '--help']}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def handle_errors(func):
    """Turn installer failures into a one-line message and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DeployError as e:
            click.secho(f"[ERROR] {e}", fg='red', err=True)
            sys.exit(1)
        except ValidationError as e:
            click.secho(f"[ERROR] Invalid input:\n{e}", fg='red', err=True)
            sys.exit(1)
        except KeyboardInterrupt:
            click.secho("\nOperation interrupted by user", fg='yellow', err=True)
            sys.exit(1)
    return wrapper


def compose_driver(deploy_dir: str) -> ComposeDriver:
    settings = get_settings()
    runner = CommandRunner()
    runtime = check_container_runtime(runner)
    return ComposeDriver(Path(deploy_dir), settings.compose_file,
                         docker_command=runtime.command, runner=runner)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option('--log-level', default=None,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help='Override the configured log level')
@handle_errors
def cli(log_level):
    """Somleng platform installer"""
    configure_logging((log_level or get_settings().log_level).upper())


@cli.command()
@click.option('--dir', 'deploy_dir', default='.', type=click.Path(file_okay=False),
              help='Deploy directory holding the compose file and .env.example')
@click.option('--no-input', is_flag=True, help='Do not pause after creating .env')
@click.option('--strict-bootstrap', is_flag=True, help='Abort when the bootstrap job fails')
@handle_errors
def setup(deploy_dir, no_input, strict_bootstrap):
    """Set up the platform from a local deploy directory"""
    from somleng_deploy.workflows import LocalSetup

    flow = LocalSetup(deploy_dir, interactive=not no_input, strict_bootstrap=strict_bootstrap)
    summary = flow.run()
    click.echo(render_summary(summary))


@cli.command()
@click.option('--domain', default=None, help='Your domain name (e.g., chorus-ai.co)')
@click.option('--ip', 'public_ip', default=None, help='Public IP (auto-detected if not provided)')
@click.option('--repo', 'repo_url', default=None, help='Git repository URL')
@click.option('--branch', default=None, help='Git branch')
@click.option('--dir', 'install_dir', default=None, help='Installation directory')
@click.option('--yes', '-y', 'assume_yes', is_flag=True, help='Skip the DNS confirmation prompt')
@click.option('--strict-bootstrap', is_flag=True, help='Abort when the bootstrap job fails')
@handle_errors
def install(domain, public_ip, repo_url, branch, install_dir, assume_yes, strict_bootstrap):
    """Install the platform on a fresh Linux server"""
    from somleng_deploy.workflows import RemoteInstall

    interactive = sys.stdin.isatty()
    flow = RemoteInstall(
        domain=domain,
        public_ip=public_ip,
        repo_url=repo_url,
        branch=branch,
        install_dir=install_dir,
        assume_yes=assume_yes,
        interactive=interactive,
        strict_bootstrap=strict_bootstrap,
    )
    summary = flow.run()
    click.echo(render_summary(summary))


@cli.command()
@click.option('--dir', 'deploy_dir', default='.', help='Deploy directory')
@handle_errors
def verify(deploy_dir):
    """Report unhealthy services of a running deployment"""
    report = verify_deployment(compose_driver(deploy_dir), delay=0)
    if report is None:
        click.echo(UNVERIFIED_MESSAGE)
        sys.exit(1)
    click.echo(report.summary())
    if not report.healthy:
        sys.exit(1)


@cli.command()
@click.option('--dir', 'deploy_dir', default='.', help='Deploy directory')
@handle_errors
def ps(deploy_dir):
    """Show service status"""
    for entry in compose_driver(deploy_dir).ps():
        name = entry.get('Service') or entry.get('Name', '')
        health = entry.get('Health') or '-'
        click.echo(f"{name:<30} {entry.get('State', ''):<12} {health}")


@cli.command()
@click.option('--dir', 'deploy_dir', default='.', help='Deploy directory')
@click.option('--follow', '-f', is_flag=True, help='Follow log output')
@click.argument('services', nargs=-1)
@handle_errors
def logs(deploy_dir, follow, services):
    """Show service logs"""
    compose_driver(deploy_dir).logs(follow=follow, services=services)


@cli.command()
@click.option('--dir', 'deploy_dir', default='.', help='Deploy directory')
@handle_errors
def down(deploy_dir):
    """Stop all services"""
    compose_driver(deploy_dir).down()
    click.echo("✅ All services stopped")


@cli.command()
@handle_errors
def show_config():
    """Show current configuration"""
    settings = get_settings()

    click.echo("Current Configuration:")
    for label, value in settings.as_display_dict().items():
        click.echo(f"  {label}: {value}")


@cli.group()
def backup_instance():
    """Database backup restore instance on EC2"""
    pass


def backup_inputs_options(func):
    options = [
        click.option('--region', default=None, help='AWS region (default: configured region)'),
        click.option('--instance-type', default='t4g.small', help='Instance type (t3.* or t4g.*)'),
        click.option('--backup/--no-backup', 'backup_enabled', default=False,
                     help='Restore the latest backup when the instance boots'),
        click.option('--database-name', required=True, help='Database to restore into'),
        click.option('--cluster-identifier', required=True, help='RDS/Aurora cluster identifier'),
        click.option('--password-parameter', required=True, help='SSM parameter holding the DB password'),
        click.option('--additional-security-group', 'additional_security_group_id', default=None,
                     help='Extra security group allowed to reach the instance'),
        click.option('--backup-bucket', 'backup_bucket_name', default=None,
                     help='Backup bucket (default: <cluster>-backups)'),
        click.option('--database-user', default='postgres', help='Database user'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_inputs(**kwargs):
    from somleng_deploy.aws.backup_instance import BackupInstanceInputs

    kwargs['region'] = kwargs.get('region') or get_settings().aws_region
    kwargs['app_name'] = get_settings().app_name
    return BackupInstanceInputs(**kwargs)


@backup_instance.command('plan')
@backup_inputs_options
@handle_errors
def backup_plan(**kwargs):
    """Print the resources that apply would create"""
    from somleng_deploy.aws.backup_instance import build_plan

    plan = build_plan(build_inputs(**kwargs))
    click.echo(json.dumps(plan.to_dict(), indent=2))


@backup_instance.command('apply')
@backup_inputs_options
@click.option('--no-wait', is_flag=True, help='Do not wait for the instance to be running')
@handle_errors
def backup_apply(no_wait, **kwargs):
    """Create the backup instance and its IAM and network resources"""
    from somleng_deploy.aws.backup_instance import BackupInstanceManager

    manager = BackupInstanceManager(build_inputs(**kwargs))
    outputs = manager.apply(wait=not no_wait)
    click.echo(json.dumps(outputs, indent=2))
    click.echo("✅ Backup instance ready")


@backup_instance.command('destroy')
@backup_inputs_options
@click.option('--yes', '-y', 'assume_yes', is_flag=True, help='Do not ask for confirmation')
@handle_errors
def backup_destroy(assume_yes, **kwargs):
    """Remove the backup instance and its IAM and network resources"""
    from somleng_deploy.aws.backup_instance import BackupInstanceManager

    inputs = build_inputs(**kwargs)
    if not assume_yes:
        click.confirm(f"Destroy {inputs.instance_name} and its resources?", abort=True)
    removed = BackupInstanceManager(inputs).destroy()
    for item in removed:
        click.echo(f"  removed {item}")
    click.echo("✅ Backup instance destroyed")


if __name__ == '__main__':
    cli()
