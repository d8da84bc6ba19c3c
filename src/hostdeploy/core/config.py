"""Configuration management for hostdeploy."""

import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Type

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


DEFAULT_TRACKED_RESOURCES = [
    "aws_security_group.app_server",
    "aws_key_pair.deployer",
    "aws_instance.app_server",
    "aws_eip.app_server",
]


class Settings(BaseSettings):
    """Orchestrator settings."""

    model_config = SettingsConfigDict(
        env_prefix="HOSTDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Layout
    project_root: Optional[Path] = Field(None, description="Repository root; resolved via git when unset")
    terraform_dir: Path = Field(Path("infra/terraform"), description="Terraform working directory")
    ansible_dir: Path = Field(Path("infra/ansible"), description="Ansible working directory")
    playbook: str = Field("playbook.yml", description="Playbook run by the configuration step")
    inventory_file: Path = Field(Path("inventory/hosts.yml"), description="Inventory path relative to ansible_dir")
    terraform_binary: str = Field("terraform")
    ansible_binary: str = Field("ansible-playbook")

    # Host access
    ssh_user: str = Field("ubuntu", description="Login user written to the inventory")
    ssh_private_key: Path = Field(Path("~/.ssh/id_rsa"), description="Private key written to the inventory")

    # State lock handling
    lock_timeout_seconds: int = Field(10, description="-lock-timeout used when probing for locks during deploy")
    unlock_lock_timeout_seconds: int = Field(5, description="-lock-timeout used by the unlock command")
    lock_probe_timeout_seconds: float = Field(300.0, description="Process timeout for the lock probe")
    unlock_settle_seconds: float = Field(2.0, description="Pause after a forced unlock")
    command_timeout_seconds: float = Field(120.0, description="Timeout for short terraform commands")
    prepare_timeout_seconds: float = Field(600.0, description="Timeout for terraform init, validate and plan")
    configure_timeout_seconds: float = Field(1800.0, description="Timeout for the configuration playbook")

    # Verification
    verify_settle_seconds: float = Field(60.0, description="Wait before probing the application")
    probe_timeout_seconds: float = Field(10.0)
    accepted_status_codes: List[int] = Field(default_factory=lambda: [200, 301, 302])

    # Fallback resource addresses removed from state when destroy fails
    tracked_resources: List[str] = Field(default_factory=lambda: list(DEFAULT_TRACKED_RESOURCES))

    aws_region: Optional[str] = Field(None, description="Fallback region when backend.tf has none")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("console")
    metrics_textfile: Optional[Path] = Field(None, description="Prometheus textfile for run metrics")

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        """Only console and json renderers exist."""
        v = v.lower()
        if v not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got: {v}")
        return v

    def resolve_root(self) -> Path:
        """Return the project root, asking git when it is not configured."""
        if self.project_root is not None:
            return Path(self.project_root).resolve()
        try:
            result = subprocess.run(
                ["git", "rev-parse", "--show-toplevel"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            return Path.cwd()
        if result.returncode == 0 and result.stdout.strip():
            return Path(result.stdout.strip())
        return Path.cwd()

    @property
    def terraform_path(self) -> Path:
        return self.resolve_root() / self.terraform_dir

    @property
    def ansible_path(self) -> Path:
        return self.resolve_root() / self.ansible_dir

    @property
    def inventory_path(self) -> Path:
        return self.ansible_path / self.inventory_file


REQUIRED_ENVIRONMENT_KEYS = {
    "domain": "DOMAIN",
    "cf_api_email": "CF_API_EMAIL",
    "cf_dns_api_token": "CF_DNS_API_TOKEN",
    "jwt_secret": "JWT_SECRET",
}

OPTIONAL_ENVIRONMENT_KEYS = {
    "repo_url": "REPO_URL",
    "repo_branch": "REPO_BRANCH",
}


class DeploymentEnvironment(BaseSettings):
    """External inputs of a deployment, read from the environment and .env.

    Values are only checked by :meth:`missing_keys`; constructing the object
    never fails on a missing key so that every missing key can be reported at once.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    domain: Optional[str] = None
    cf_api_email: Optional[str] = None
    cf_dns_api_token: Optional[str] = Field(None, repr=False)
    jwt_secret: Optional[str] = Field(None, repr=False)
    repo_url: Optional[str] = None
    repo_branch: Optional[str] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # The project .env overrides variables already exported in the shell.
        return init_settings, dotenv_settings, env_settings, file_secret_settings

    @classmethod
    def load(cls, env_file: Optional[Path] = None) -> "DeploymentEnvironment":
        """Load from the process environment and ``env_file``; the file wins."""
        if env_file is not None and env_file.is_file():
            return cls(_env_file=env_file)
        return cls(_env_file=None)

    def missing_keys(self) -> List[str]:
        """Names of required variables that are absent or blank."""
        missing = []
        for field_name, env_name in REQUIRED_ENVIRONMENT_KEYS.items():
            value = getattr(self, field_name)
            if value is None or not value.strip():
                missing.append(env_name)
        return missing

    def terraform_variables(self) -> Dict[str, str]:
        """Input variables for the Terraform configuration."""
        return {
            "domain": self.domain or "",
            "cloudflare_email": self.cf_api_email or "",
            "cloudflare_api_token": self.cf_dns_api_token or "",
            "jwt_secret": self.jwt_secret or "",
        }

    def configuration_env(self) -> Dict[str, str]:
        """Exactly the variables the remote configuration step declares."""
        env = {}
        for field_name, env_name in REQUIRED_ENVIRONMENT_KEYS.items():
            env[env_name] = getattr(self, field_name) or ""
        for field_name, env_name in OPTIONAL_ENVIRONMENT_KEYS.items():
            value = getattr(self, field_name)
            if value:
                env[env_name] = value
        return env
