"""Post-start health snapshot of the compose services."""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from somleng_deploy.compose import ComposeDriver
from somleng_deploy.exceptions import OrchestratorError

logger = logging.getLogger(__name__)

UNVERIFIED_MESSAGE = "Could not verify (check manually with: docker compose ps)"


@dataclass
class ServiceStatus:
    name: str
    state: str = ""
    health: str = ""

    @classmethod
    def from_ps_entry(cls, entry: Dict[str, Any]) -> "ServiceStatus":
        return cls(
            name=entry.get('Service') or entry.get('Name', ''),
            state=entry.get('State', '') or '',
            health=entry.get('Health', '') or '',
        )

    @property
    def unhealthy(self) -> bool:
        """Running, with a health check that is not reporting healthy."""
        return self.state == 'running' and bool(self.health) and self.health != 'healthy'


@dataclass
class HealthReport:
    services: List[ServiceStatus] = field(default_factory=list)

    @property
    def unhealthy(self) -> List[ServiceStatus]:
        return [service for service in self.services if service.unhealthy]

    @property
    def healthy(self) -> bool:
        return not self.unhealthy

    def summary(self) -> str:
        if self.healthy:
            return "All services healthy"
        return "\n".join(f"UNHEALTHY: {service.name}" for service in self.unhealthy)


def evaluate_health(entries: Iterable[Dict[str, Any]]) -> HealthReport:
    return HealthReport(services=[ServiceStatus.from_ps_entry(entry) for entry in entries])


def verify_deployment(driver: ComposeDriver, delay: float = 5.0,
                      sleep: Callable[[float], None] = time.sleep) -> Optional[HealthReport]:
    """Wait, then take one status snapshot.

    Returns:
        HealthReport, or None when the status could not be read
    """
    logger.info("Verifying deployment...")
    if delay > 0:
        sleep(delay)

    try:
        entries = driver.ps()
    except OrchestratorError as e:
        logger.warning(f"⚠️  {UNVERIFIED_MESSAGE}: {e}")
        return None

    report = evaluate_health(entries)
    if report.healthy:
        logger.info("✅ All services healthy")
    else:
        for service in report.unhealthy:
            logger.warning(f"❌ Service {service.name} is {service.health}")
    return report
