# src/somleng_deploy/config/settings.py
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Single source of truth for installer settings.

    Configuration precedence:
    1. Environment variables prefixed with SOMLENG_DEPLOY_ (highest priority)
    2. somleng-deploy.env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from somleng_deploy.config.settings import get_settings
        settings = get_settings()
        compose_file = settings.compose_file
    """

    # Application Settings
    app_name: str = Field(
        default="somleng",
        description="Name used for AWS resource names and tags"
    )

    # Compose project layout
    compose_file: str = Field(
        default="docker-compose.production.yml",
        description="Compose file inside the deploy directory"
    )

    env_file_name: str = Field(
        default=".env",
        description="Materialized platform configuration file"
    )

    env_template_name: str = Field(
        default=".env.example",
        description="Template the configuration file is rendered from"
    )

    bootstrap_service: str = Field(
        default="somleng-bootstrap",
        description="One-shot compose service that seeds the database"
    )

    bootstrap_profile: str = Field(
        default="bootstrap",
        description="Compose profile the bootstrap service belongs to"
    )

    placeholder_domain: str = Field(
        default="somleng.example.com",
        description="Domain shipped in the template; means 'not configured yet'"
    )

    # Remote install defaults
    repo_url: str = Field(
        default="https://github.com/somleng/somleng-project.git",
        description="Git repository holding the deploy directory"
    )

    branch: str = Field(
        default="main",
        description="Git branch to clone or pull"
    )

    install_dir: str = Field(
        default="/opt/somleng",
        description="Installation directory on the remote host"
    )

    deploy_subdir: str = Field(
        default="deploy",
        description="Directory inside the checkout holding the compose files"
    )

    # Environment detection
    ip_echo_endpoints: List[str] = Field(
        default=[
            "https://checkip.amazonaws.com",
            "https://ifconfig.me",
            "https://api.ipify.org",
        ],
        description="Public IP echo services, queried in order"
    )

    ip_detection_timeout: float = Field(
        default=5.0,
        description="Per-endpoint timeout in seconds"
    )

    compose_release_url: str = Field(
        default="https://api.github.com/repos/docker/compose/releases/latest",
        description="Release metadata used to install the compose plugin on yum hosts"
    )

    # Verification
    health_check_delay: float = Field(
        default=5.0,
        description="Seconds to wait after 'up --wait' before the health snapshot"
    )

    # AWS
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_profile: Optional[str] = Field(
        default=None,
        alias="AWS_PROFILE"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('log_level')
    def normalize_log_level(cls, v):
        """Accept lower-case level names from the environment."""
        level = v.upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if level not in valid_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_levels}")
        return level

    @field_validator('ip_echo_endpoints')
    def require_endpoints(cls, v):
        if not v:
            raise ValueError("At least one IP echo endpoint is required")
        return v

    def as_display_dict(self) -> dict:
        """Settings as shown by the show-config command."""
        return {
            'Compose File': self.compose_file,
            'Env File': self.env_file_name,
            'Env Template': self.env_template_name,
            'Bootstrap Service': f"{self.bootstrap_service} (profile: {self.bootstrap_profile})",
            'Placeholder Domain': self.placeholder_domain,
            'Repository': f"{self.repo_url} ({self.branch})",
            'Install Dir': self.install_dir,
            'IP Echo Endpoints': ", ".join(self.ip_echo_endpoints),
            'AWS Region': self.aws_region,
            'Log Level': self.log_level,
        }

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_prefix="SOMLENG_DEPLOY_",
        env_file="somleng-deploy.env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
