"""
Pytest configuration and fixtures for hostdeploy tests.
"""

from pathlib import Path

import pytest

from hostdeploy.core.config import DeploymentEnvironment, Settings
from hostdeploy.utils.logging import setup_logging


@pytest.fixture(autouse=True)
def isolate_hostdeploy_env(monkeypatch):
    """
    Keep the operator's own configuration out of the tests.

    Removes HOSTDEPLOY_* overrides and the deployment inputs so each test
    starts from defaults and sets exactly what it needs.
    """
    import os
    for key in list(os.environ):
        if key.startswith("HOSTDEPLOY_") or key.startswith("TF_VAR_"):
            monkeypatch.delenv(key, raising=False)
    for key in ("DOMAIN", "CF_API_EMAIL", "CF_DNS_API_TOKEN", "JWT_SECRET", "REPO_URL", "REPO_BRANCH"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def console_logging():
    """Plain (uncolored) operator log lines on stdout."""
    setup_logging("DEBUG", "console", colors=False)


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A repository layout with the files preconditions look for."""
    terraform_dir = tmp_path / "infra" / "terraform"
    terraform_dir.mkdir(parents=True)
    (terraform_dir / "terraform.tfvars").write_text('instance_type = "t3.small"\n')
    (terraform_dir / "backend.tf").write_text(
        'terraform {\n'
        '  backend "s3" {\n'
        '    bucket         = "todo-app-tfstate"\n'
        '    key            = "prod/terraform.tfstate"\n'
        '    region         = "eu-west-1"\n'
        '    dynamodb_table = "todo-app-tflock"\n'
        '    encrypt        = true\n'
        '  }\n'
        '}\n'
    )
    (tmp_path / "infra" / "ansible").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def settings(project_root: Path) -> Settings:
    return Settings(
        project_root=project_root,
        verify_settle_seconds=0,
        unlock_settle_seconds=0,
        _env_file=None,
    )


@pytest.fixture
def environment() -> DeploymentEnvironment:
    return DeploymentEnvironment(
        domain="todo.example.com",
        cf_api_email="ops@example.com",
        cf_dns_api_token="cf-token-123",
        jwt_secret="jwt-secret-456",
        _env_file=None,
    )
