"""
Materialization of the platform .env file.

The .env file is rendered once from .env.example: identity/network keys get
caller supplied values, blank secret keys get freshly generated secrets and
every other line is copied as-is. An existing .env is never touched, so the
presence of the file is what marks an installation as bootstrapped.
"""
import logging
import re
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from dotenv import dotenv_values

from somleng_deploy.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SECRET_BYTES = 64

DOMAIN_KEY = "DOMAIN"
SIP_IP_KEY = "FS_EXTERNAL_SIP_IP"
RTP_IP_KEY = "FS_EXTERNAL_RTP_IP"

NETWORK_KEYS = (DOMAIN_KEY, SIP_IP_KEY, RTP_IP_KEY)

SECRET_KEYS = (
    "POSTGRES_PASSWORD",
    "SECRET_KEY_BASE",
    "ANYCABLE_SECRET",
    "RATING_ENGINE_PASSWORD",
)

_ASSIGNMENT = re.compile(r'^(?P<key>[A-Za-z_][A-Za-z0-9_]*)=(?P<value>.*)$')


def generate_secret(num_bytes: int = SECRET_BYTES) -> str:
    """Return a hex encoded secret built from num_bytes of CSPRNG output."""
    return secrets.token_hex(num_bytes)


@dataclass(frozen=True)
class DeploymentConfig:
    """Values read back from a materialized .env file."""
    domain: Optional[str]
    sip_ip: Optional[str]
    rtp_ip: Optional[str]
    values: Mapping[str, Optional[str]] = field(default_factory=dict)

    @classmethod
    def from_values(cls, values: Mapping[str, Optional[str]]) -> "DeploymentConfig":
        return cls(
            domain=values.get(DOMAIN_KEY) or None,
            sip_ip=values.get(SIP_IP_KEY) or None,
            rtp_ip=values.get(RTP_IP_KEY) or None,
            values=dict(values),
        )

    @classmethod
    def from_env_file(cls, path: Union[str, Path]) -> "DeploymentConfig":
        return cls.from_values(read_env_file(path))


@dataclass
class MaterializeResult:
    """What materialize_env_file did to the target path."""
    path: Path
    created: bool
    generated_keys: List[str] = field(default_factory=list)
    substituted_keys: List[str] = field(default_factory=list)


def read_env_file(path: Union[str, Path]) -> Dict[str, Optional[str]]:
    """Parse a KEY=VALUE file without exporting anything into os.environ."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"{path} not found")
    return dict(dotenv_values(path))


def render_env_lines(lines: List[str], overrides: Mapping[str, str],
                     secret_keys=SECRET_KEYS) -> Tuple[str, List[str], List[str]]:
    """Apply overrides and secret generation to template lines.

    Returns:
        (rendered text, generated secret keys, substituted keys)
    """
    rendered = []
    generated, substituted = [], []

    for line in lines:
        stripped = line.rstrip("\r\n")
        newline = line[len(stripped):]
        match = _ASSIGNMENT.match(stripped)
        if not match:
            rendered.append(line)
            continue

        key, value = match.group('key'), match.group('value')
        if key in overrides:
            rendered.append(f"{key}={overrides[key]}{newline}")
            substituted.append(key)
        elif key in secret_keys and value == "":
            rendered.append(f"{key}={generate_secret()}{newline}")
            generated.append(key)
        else:
            rendered.append(line)

    missing = [key for key in overrides if key not in substituted]
    for key in missing:
        logger.warning(f"⚠️  {key} is not present in the template, value not written")

    return "".join(rendered), generated, substituted


def materialize_env_file(template: Union[str, Path], target: Union[str, Path],
                         overrides: Optional[Mapping[str, str]] = None) -> MaterializeResult:
    """Create target from template unless it already exists.

    Args:
        template: Path to .env.example
        target: Path of the .env file to create
        overrides: Values for identity/network keys (replace whatever the
            template holds)

    Returns:
        MaterializeResult; created is False when target already existed

    Raises:
        ConfigurationError: if the template is missing
        FileExistsError: if another writer created target after the check
    """
    template, target = Path(template), Path(target)
    overrides = {k: v for k, v in (overrides or {}).items() if v}

    if target.exists():
        logger.info(f"{target.name} already exists, skipping generation")
        return MaterializeResult(path=target, created=False)

    if not template.is_file():
        raise ConfigurationError(f"Template {template} not found, cannot create {target.name}")

    logger.info(f"Creating {target.name} from {template.name}...")
    with open(template, 'r', encoding='utf-8') as f:
        lines = f.readlines()

    text, generated, substituted = render_env_lines(lines, overrides)

    with open(target, 'x', encoding='utf-8') as f:
        f.write(text)

    result = MaterializeResult(path=target, created=True,
                               generated_keys=generated, substituted_keys=substituted)
    logger.info(f"✅ {target.name} created with auto-generated secrets: "
                f"{', '.join(result.generated_keys) or 'none'}")
    return result
