"""
Configuration management for the device monitor.

Loads settings from environment variables (or a YAML file), validates
them once at startup and provides typed access. Missing controller
connection fields do not fail loading: the gateway stays in a
"not configured" state and every controller operation raises
ConfigurationError instead.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


REQUIRED_CONNECTION_FIELDS = ("host", "port", "username", "password")


class MonitorConfig(BaseModel):
    """Device monitor configuration."""

    # ========================================================================
    # Controller Connection
    # ========================================================================

    host: Optional[str] = Field(default=None, description="Controller host name or IP")
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="Controller port")
    username: Optional[str] = Field(default=None, description="Controller account")
    password: Optional[str] = Field(default=None, description="Controller password")
    site: str = Field(default="default", description="Controller site identifier")

    unifi_os: bool = Field(
        default=False,
        description="Controller runs on a UniFi OS console (/proxy/network prefix)"
    )
    use_tls: bool = Field(default=True, description="Connect over HTTPS")
    verify_ssl: bool = Field(
        default=False,
        description="Verify the controller certificate (controllers ship self-signed)"
    )

    # ========================================================================
    # Storage
    # ========================================================================

    config_dir: Path = Field(default=Path("/config"), description="State/config directory")
    db_path: Optional[Path] = Field(default=None, description="SQLite device database path")

    # ========================================================================
    # Timing
    # ========================================================================

    poll_interval: int = Field(default=60, ge=5, le=86400, description="Poll controller every N seconds")
    session_validity: float = Field(default=300.0, gt=0, description="Seconds before forced re-login")
    min_request_interval: float = Field(default=0.2, ge=0, description="Minimum seconds between requests")
    max_backoff: float = Field(default=5.0, ge=0, description="Throttling backoff cap in seconds")
    batch_item_delay: float = Field(default=0.3, ge=0, description="Delay between batch items")
    request_timeout: float = Field(default=10.0, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(default=3, ge=1, le=10, description="Attempts per request on transport errors")
    retry_backoff: float = Field(default=1.0, ge=0, description="Base of the transport retry backoff")

    # ========================================================================
    # Logging
    # ========================================================================

    log_level: str = Field(default="INFO", description="Log level")

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    @model_validator(mode="after")
    def set_db_path(self):
        """Default db_path to config_dir/devices.db."""
        if self.db_path is None:
            self.db_path = self.config_dir / "devices.db"
        return self

    @field_validator("host", "username", "password")
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and not str(v).strip():
            return None
        return v

    @field_validator("host")
    @classmethod
    def validate_host(cls, v):
        if v and ("://" in v or "/" in v):
            raise ValueError("host must be a bare host name or IP, without scheme or path")
        return v

    @field_validator("site")
    @classmethod
    def validate_site(cls, v):
        if not v or "/" in v:
            raise ValueError("site must be a non-empty identifier")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ["DEBUG", "INFO", "WARNING", "ERROR"]:
            raise ValueError("log_level must be DEBUG, INFO, WARNING, or ERROR")
        return v

    # ========================================================================
    # Parsed Properties
    # ========================================================================

    def missing_fields(self) -> list[str]:
        """Names of required connection fields that are not set."""
        return [name for name in REQUIRED_CONNECTION_FIELDS if getattr(self, name) in (None, "")]

    @property
    def is_configured(self) -> bool:
        return not self.missing_fields()

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def api_prefix(self) -> str:
        return "/proxy/network" if self.unifi_os else ""

    @property
    def login_path(self) -> str:
        return "/api/auth/login" if self.unifi_os else "/api/login"

    @property
    def logout_path(self) -> str:
        return "/api/auth/logout" if self.unifi_os else "/api/logout"

    def site_path(self, endpoint: str) -> str:
        """Site-scoped API path, e.g. site_path("stat/sta")."""
        return f"{self.api_prefix}/api/s/{self.site}/{endpoint.lstrip('/')}"

    @classmethod
    def from_yaml(cls, path: Path) -> "MonitorConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return _build(cls, {})

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        values: dict[str, Any] = {}

        if "controller" in data:
            c = data["controller"]
            for key in ("host", "port", "username", "password", "site",
                        "unifi_os", "use_tls", "verify_ssl"):
                if key in c:
                    values[key] = c[key]

        if "timing" in data:
            t = data["timing"]
            for key in ("poll_interval", "session_validity", "min_request_interval",
                        "max_backoff", "batch_item_delay", "request_timeout",
                        "max_retries", "retry_backoff"):
                if key in t:
                    values[key] = t[key]

        if "paths" in data:
            p = data["paths"]
            if "config_dir" in p:
                values["config_dir"] = Path(p["config_dir"])
            if "db" in p:
                values["db_path"] = Path(p["db"])

        if "log_level" in data:
            values["log_level"] = data["log_level"]

        return _build(cls, values)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def _build(cls, values: dict[str, Any]) -> MonitorConfig:
    try:
        return cls(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(credential_store=None) -> MonitorConfig:
    """
    Load configuration from environment variables.

    Args:
        credential_store: Optional CredentialStore consulted when
            UNIFI_PASSWORD is not set in the environment.

    Returns:
        MonitorConfig: Validated configuration

    Raises:
        ConfigurationError: If a setting is present but invalid
    """
    config_dict: dict[str, Any] = {
        # Controller connection
        'host': os.environ.get('UNIFI_HOST') or None,
        'port': os.environ.get('UNIFI_PORT') or None,
        'username': os.environ.get('UNIFI_USERNAME') or None,
        'password': os.environ.get('UNIFI_PASSWORD') or None,
        'site': os.environ.get('UNIFI_SITE', 'default'),
        'unifi_os': _env_bool('UNIFI_OS', 'false'),
        'use_tls': _env_bool('UNIFI_USE_TLS', 'true'),
        'verify_ssl': _env_bool('UNIFI_VERIFY_SSL', 'false'),

        # Storage
        'config_dir': Path(os.environ.get('CONFIG_DIR', '/config')),
        'db_path': os.environ.get('DB_PATH') or None,

        # Timing
        'poll_interval': os.environ.get('POLL_INTERVAL', '60'),
        'session_validity': os.environ.get('SESSION_VALIDITY', '300'),
        'min_request_interval': os.environ.get('MIN_REQUEST_INTERVAL', '0.2'),
        'max_backoff': os.environ.get('MAX_BACKOFF', '5.0'),
        'batch_item_delay': os.environ.get('BATCH_ITEM_DELAY', '0.3'),
        'request_timeout': os.environ.get('REQUEST_TIMEOUT', '10'),
        'max_retries': os.environ.get('MAX_RETRIES', '3'),
        'retry_backoff': os.environ.get('RETRY_BACKOFF', '1.0'),

        # Logging
        'log_level': os.environ.get('LOG_LEVEL', 'INFO'),
    }

    if credential_store is not None and not config_dict['password']:
        stored = credential_store.load_credentials()
        if stored:
            config_dict['password'] = stored.get('password')
            config_dict['username'] = config_dict['username'] or stored.get('username')

    config = _build(MonitorConfig, config_dict)

    missing = config.missing_fields()
    if missing:
        logger.warning(f"Controller not configured, missing: {', '.join(missing)}")

    return config
