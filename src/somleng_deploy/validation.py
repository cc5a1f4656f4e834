"""Checks run on the materialized .env before anything is handed to Docker."""
import logging

from somleng_deploy.env_file import DeploymentConfig
from somleng_deploy.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def validate_config(config: DeploymentConfig, placeholder_domain: str, env_file_name: str = ".env") -> DeploymentConfig:
    """Fail on the first missing identity/network value.

    Only presence is checked. Domains are not resolved and IPs are not parsed.

    Raises:
        ConfigurationError: with a message naming the offending key
    """
    logger.info("Validating configuration...")

    if not config.domain or config.domain == placeholder_domain:
        raise ConfigurationError(
            f"DOMAIN is not set in {env_file_name}. Please set it to your domain name."
        )

    if not config.sip_ip:
        raise ConfigurationError(
            f"FS_EXTERNAL_SIP_IP is not set in {env_file_name}. Please set it to this server's public IP."
        )

    if not config.rtp_ip:
        raise ConfigurationError(
            f"FS_EXTERNAL_RTP_IP is not set in {env_file_name}. Please set it to this server's public IP."
        )

    logger.info("✅ Configuration looks good.")
    return config
