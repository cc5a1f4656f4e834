import pytest

from somleng_deploy.exceptions import PrerequisiteError
from somleng_deploy.repository import sync_repository
from tests.fixtures.runner_fixtures import FakeRunner

REPO_URL = "https://github.com/somleng/somleng-project.git"


def test_existing_checkout_is_pulled(tmp_path):
    (tmp_path / "deploy").mkdir()
    runner = FakeRunner()

    deploy_dir = sync_repository(runner, REPO_URL, "main", tmp_path)

    assert deploy_dir == tmp_path / "deploy"
    assert runner.calls == [["git", "pull", "--ff-only", "origin", "main"]]


def test_failed_pull_keeps_existing_files(tmp_path):
    (tmp_path / "deploy").mkdir()
    runner = FakeRunner()
    runner.respond(["git", "pull"], returncode=1)

    assert sync_repository(runner, REPO_URL, "main", tmp_path) == tmp_path / "deploy"


def test_fresh_install_clones_shallow(tmp_path):
    install_dir = tmp_path / "somleng"
    runner = FakeRunner(is_root=True)
    runner.respond(["git", "clone"], effect=lambda args: (install_dir / "deploy").mkdir(parents=True))

    deploy_dir = sync_repository(runner, REPO_URL, "develop", install_dir)

    assert deploy_dir == install_dir / "deploy"
    assert runner.calls == [
        ["mkdir", "-p", str(install_dir)],
        ["git", "clone", "--branch", "develop", "--depth", "1", REPO_URL, str(install_dir)],
    ]


def test_non_root_install_takes_ownership(tmp_path):
    install_dir = tmp_path / "somleng"
    runner = FakeRunner(is_root=False)
    runner.respond(["git", "clone"], effect=lambda args: (install_dir / "deploy").mkdir(parents=True))

    sync_repository(runner, REPO_URL, "main", install_dir)

    assert runner.ran("sudo", "mkdir", "-p")
    assert runner.ran("sudo", "chown")


def test_failed_clone_is_a_prerequisite_error(tmp_path):
    runner = FakeRunner()
    runner.respond(["git", "clone"], returncode=128)

    with pytest.raises(PrerequisiteError, match="Could not clone"):
        sync_repository(runner, REPO_URL, "main", tmp_path / "somleng")


def test_checkout_without_deploy_dir_is_rejected(tmp_path):
    with pytest.raises(PrerequisiteError, match="not found after checkout"):
        sync_repository(FakeRunner(), REPO_URL, "main", tmp_path / "somleng")


def test_missing_git_is_a_prerequisite_error(tmp_path):
    runner = FakeRunner(available=("docker",))

    with pytest.raises(PrerequisiteError, match="git is not installed"):
        sync_repository(runner, REPO_URL, "main", tmp_path / "somleng")

    assert runner.calls == []
