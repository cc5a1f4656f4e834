"""AWS client management."""
import logging
from typing import Any, Dict, Optional, Tuple

import boto3

from somleng_deploy.config.settings import get_settings

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Singleton manager for AWS service clients, cached per (service, region)."""
    _instance = None
    _clients: Dict[Tuple[str, str], Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AWSClientManager, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize the client manager with settings."""
        self.settings = get_settings()
        self.region = self.settings.aws_region
        self.profile = self.settings.aws_profile

        logger.debug("Initializing AWSClientManager")
        logger.debug(f"  Region: {self.region}")
        logger.debug(f"  Profile: {self.profile or '(default credentials chain)'}")

    def get_client(self, service_name: str, region: Optional[str] = None) -> Any:
        """Get or create an AWS service client."""
        region = region or self.region
        key = (service_name, region)
        if key in self._clients:
            return self._clients[key]

        if self.profile:
            # Named profile (SSO or static credentials)
            session = boto3.Session(profile_name=self.profile)
            client = session.client(service_name, region_name=region)
            logger.debug(f"Created {service_name} client in {region} using profile: {self.profile}")
        else:
            client = boto3.client(service_name, region_name=region)
            logger.debug(f"Created {service_name} client in {region}")

        self._clients[key] = client
        return client

    def clear_clients(self):
        """Clear all cached clients."""
        self._clients.clear()
        logger.debug("Cleared all AWS clients")


# Convenience functions for common operations

def get_ec2_client(region: Optional[str] = None):
    """Get the EC2 client."""
    return AWSClientManager().get_client('ec2', region)


def get_iam_client(region: Optional[str] = None):
    """Get the IAM client."""
    return AWSClientManager().get_client('iam', region)


def get_rds_client(region: Optional[str] = None):
    """Get the RDS client."""
    return AWSClientManager().get_client('rds', region)


def get_ssm_client(region: Optional[str] = None):
    """Get the SSM client."""
    return AWSClientManager().get_client('ssm', region)


def get_sts_client(region: Optional[str] = None):
    """Get the STS client."""
    return AWSClientManager().get_client('sts', region)


def error_code(error) -> str:
    """Error code of a botocore ClientError ('' when absent)."""
    return getattr(error, 'response', {}).get('Error', {}).get('Code', '')
