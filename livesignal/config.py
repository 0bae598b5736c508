"""Configuration loaded from environment variables or a YAML file.

Environment variables (all optional):

    LIVESIGNAL_LOG_LEVEL, LIVESIGNAL_LOG_FORMAT, LIVESIGNAL_LOG_DIR
    LIVESIGNAL_TRANSPORT            "rendezvous" (default) or "direct"
    LIVESIGNAL_RENDEZVOUS_URL       base URL of the rendezvous service
    LIVESIGNAL_DIRECT_URL           websocket endpoint for the direct variant
                                    (falls back to WS_HOST)
    LIVESIGNAL_SUBPROTOCOL          websocket sub-protocol, empty to disable
    LIVESIGNAL_OPEN_TIMEOUT, LIVESIGNAL_HTTP_TIMEOUT
    LIVESIGNAL_EARLY_TRICKLE, LIVESIGNAL_MEDIA_UP_FRONT
    LIVESIGNAL_ICE_SERVERS          comma-separated STUN/TURN URLs
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import structlog
import yaml

from livesignal.core.constants import SignalingConstants


logger = structlog.get_logger(__name__)

TRANSPORT_RENDEZVOUS = "rendezvous"
TRANSPORT_DIRECT = "direct"
TRANSPORTS = (TRANSPORT_RENDEZVOUS, TRANSPORT_DIRECT)

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class SystemConfig:
    log_level: str = "INFO"
    log_format: str = "console"
    log_dir: Optional[str] = None


@dataclass
class SignalingConfig:
    transport: str = TRANSPORT_RENDEZVOUS
    rendezvous_url: str = "http://localhost:3000"
    direct_url: Optional[str] = None
    subprotocol: Optional[str] = SignalingConstants.SUBPROTOCOL
    open_timeout: float = SignalingConstants.OPEN_TIMEOUT
    http_timeout: float = SignalingConstants.HTTP_TIMEOUT


@dataclass
class NegotiationConfig:
    # Send local candidates as soon as they are discovered instead of after
    # the local description has gone out
    early_trickle: bool = False
    # Acquire media before the first offer instead of after the remote
    # description is committed
    media_up_front: bool = False
    ice_servers: List[str] = field(default_factory=lambda: ["stun:stun.l.google.com:19302"])


@dataclass
class Config:
    """Top-level configuration with one section per concern."""

    system: SystemConfig = field(default_factory=SystemConfig)
    signaling: SignalingConfig = field(default_factory=SignalingConfig)
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)

    def validate(self) -> None:
        """Check cross-field constraints.

        Raises:
            ValueError: If the configuration cannot be used
        """
        if self.signaling.transport not in TRANSPORTS:
            raise ValueError(
                f"Unsupported transport: {self.signaling.transport} (expected one of {', '.join(TRANSPORTS)})"
            )
        if self.signaling.transport == TRANSPORT_DIRECT and not self.signaling.direct_url:
            raise ValueError("Direct transport requires a direct_url")
        if self.signaling.open_timeout <= 0:
            raise ValueError(f"open_timeout must be positive, got {self.signaling.open_timeout}")
        if self.signaling.http_timeout <= 0:
            raise ValueError(f"http_timeout must be positive, got {self.signaling.http_timeout}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            Validated Config instance

        Raises:
            ValueError: If a variable has an invalid value
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(f"LIVESIGNAL_{name}")
            return value if value not in (None, "") else None

        system = SystemConfig(
            log_level=get("LOG_LEVEL") or SystemConfig.log_level,
            log_format=get("LOG_FORMAT") or SystemConfig.log_format,
            log_dir=get("LOG_DIR"),
        )

        subprotocol = env.get("LIVESIGNAL_SUBPROTOCOL")
        signaling = SignalingConfig(
            transport=get("TRANSPORT") or SignalingConfig.transport,
            rendezvous_url=get("RENDEZVOUS_URL") or SignalingConfig.rendezvous_url,
            direct_url=get("DIRECT_URL") or env.get("WS_HOST") or None,
            subprotocol=SignalingConfig.subprotocol if subprotocol is None else (subprotocol or None),
            open_timeout=_float(get("OPEN_TIMEOUT"), SignalingConfig.open_timeout, "OPEN_TIMEOUT"),
            http_timeout=_float(get("HTTP_TIMEOUT"), SignalingConfig.http_timeout, "HTTP_TIMEOUT"),
        )

        negotiation = NegotiationConfig(
            early_trickle=(get("EARLY_TRICKLE") or "").lower() in _TRUE,
            media_up_front=(get("MEDIA_UP_FRONT") or "").lower() in _TRUE,
        )
        ice_servers = get("ICE_SERVERS")
        if ice_servers is not None:
            negotiation.ice_servers = [url.strip() for url in ice_servers.split(",") if url.strip()]

        result = cls(system=system, signaling=signaling, negotiation=negotiation)
        result.validate()
        return result

    @classmethod
    def from_yaml(cls, file_path: str | Path) -> "Config":
        """Load configuration from a YAML file with optional sections.

        Example:
            signaling:
              transport: direct
              direct_url: ws://localhost:3000/ws/client
            negotiation:
              early_trickle: true

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not valid YAML or has unknown keys
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {file_path}")

        logger.info("Loading config from YAML", file_path=str(file_path))

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML file: {e}")

        if not isinstance(data, dict):
            raise ValueError("YAML file must contain a dictionary")

        try:
            result = cls(
                system=SystemConfig(**_section(data, "system")),
                signaling=SignalingConfig(**_section(data, "signaling")),
                negotiation=NegotiationConfig(**_section(data, "negotiation")),
            )
        except TypeError as e:
            raise ValueError(f"Invalid config section: {e}")

        result.validate()
        return result

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a dictionary")
    return section


def _float(value: Optional[str], default: float, name: str) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"LIVESIGNAL_{name} must be a number, got {value!r}")


config = Config.from_env()
