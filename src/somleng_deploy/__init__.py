"""
Deployment tooling for the Somleng platform.

This package contains:
- Host preparation (Docker install, firewall, repository checkout)
- .env materialization with generated secrets
- Docker Compose bring-up with the database bootstrap job and health checks
- AWS provisioning for the database backup instance
"""

__version__ = "0.1.0"
