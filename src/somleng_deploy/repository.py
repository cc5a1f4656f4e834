"""Checkout of the repository that carries the deploy directory."""
import logging
import os
import subprocess
from pathlib import Path
from typing import Union

from somleng_deploy.exceptions import PrerequisiteError
from somleng_deploy.utils.commands import CommandRunner

logger = logging.getLogger(__name__)


def sync_repository(runner: CommandRunner, repo_url: str, branch: str,
                    install_dir: Union[str, Path], deploy_subdir: str = "deploy") -> Path:
    """Clone the repository, or fast-forward an existing checkout.

    A failed pull on an existing installation is only a warning: the files
    already on disk are used as they are.

    Returns:
        Path to the deploy directory inside the checkout
    """
    install_dir = Path(install_dir)
    deploy_dir = install_dir / deploy_subdir
    if not runner.which('git'):
        raise PrerequisiteError("git is not installed. Install it with your package manager and re-run.")

    logger.info(f"Setting up {install_dir} ...")

    if deploy_dir.is_dir():
        logger.info("Existing installation found, pulling latest...")
        result = runner.run(['git', 'pull', '--ff-only', 'origin', branch],
                            cwd=install_dir, check=False)
        if not result.ok:
            logger.warning(f"⚠️  git pull failed (exit {result.returncode}), continuing with existing files")
    else:
        sudo = runner.sudo()
        try:
            runner.run([*sudo, 'mkdir', '-p', str(install_dir)])
            if sudo:
                runner.run([*sudo, 'chown', f"{os.getuid()}:{os.getgid()}", str(install_dir)])
            runner.run(['git', 'clone', '--branch', branch, '--depth', '1', repo_url, str(install_dir)])
        except (subprocess.CalledProcessError, OSError) as e:
            raise PrerequisiteError(f"Could not clone {repo_url} ({branch}) into {install_dir}: {e}")

    if not deploy_dir.is_dir():
        raise PrerequisiteError(f"{deploy_dir} not found after checkout")

    logger.info(f"✅ Deploy files ready at {deploy_dir}")
    return deploy_dir
