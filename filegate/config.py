"""Configuration with JSON file, secrets.yml, .env and env variable support.

Environment variable names are the upper-cased field names without a prefix
(``SF_LOGIN_URL``, ``AWS_S3_BUCKET``, ``SESSION_SECRET`` ...), so existing
deployment environments keep working.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from filegate.errors import ConfigMissingError

logger = logging.getLogger(__name__)

# Fields without which the process must not start.
REQUIRED_FIELDS: tuple[str, ...] = (
    "sf_login_url",
    "sf_auth_callback_url",
    "sf_consumer_key",
    "sf_consumer_secret",
    "sf_api_version",
    "aws_access_key_id",
    "aws_secret_access_key",
    "aws_region",
    "aws_s3_bucket",
    "session_secret",
)


def _find_repo_root(*, start: Path) -> Path:
    """Best-effort repository root discovery.

    First directory containing `pyproject.toml`, otherwise the current
    working directory.
    """

    try:
        start = start.resolve()
        for p in [start, *start.parents]:
            if (p / "pyproject.toml").exists():
                return p
    except OSError:
        pass

    return Path.cwd()


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning {} for a missing or non-mapping file."""
    if not path.exists() or not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top-level YAML value is not a mapping", path)
        return {}
    return {str(k).lower(): v for k, v in data.items()}


class GatewayConfig(BaseSettings):
    """Gateway configuration.

    Load order (later overrides earlier):
    1. config.json - base configuration
    2. config.yml - non-secret overlay at the repository root
    3. secrets.yml - OAuth client secret, AWS keys, session secret
    4. environment variables (a .env file only fills values no file sets)
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity provider / record authority
    sf_login_url: str = Field(...)
    sf_auth_callback_url: str = Field(...)
    sf_consumer_key: str = Field(...)
    sf_consumer_secret: str = Field(...)
    sf_api_version: str = Field(...)
    sf_oauth_scope: str = Field(default="api")

    # Object store
    aws_access_key_id: str = Field(...)
    aws_secret_access_key: str = Field(...)
    aws_region: str = Field(...)
    aws_s3_bucket: str = Field(...)
    aws_endpoint_url: str | None = Field(
        default=None,
        description="Optional S3-compatible endpoint (LocalStack, MinIO) for local development.",
    )

    # Session settings
    session_secret: str = Field(...)
    session_duration: int = Field(
        default=120,
        gt=0,
        description="Sliding session inactivity window, in minutes.",
    )
    session_cookie_name: str = Field(default="sessionId")
    session_sweep_interval_seconds: int = Field(default=60, gt=0)

    # Outbound call bounds
    http_timeout_seconds: float = Field(default=10.0, gt=0)
    s3_connect_timeout_seconds: float = Field(default=5.0, gt=0)
    s3_read_timeout_seconds: float = Field(default=30.0, gt=0)
    stream_chunk_size: int = Field(default=64 * 1024, gt=0)

    # Server settings
    bind_host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    log_level: str = Field(default="INFO")

    @property
    def login_base_url(self) -> str:
        return self.sf_login_url.rstrip("/")

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.login_base_url}/services/oauth2/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.login_base_url}/services/oauth2/token"

    @property
    def session_max_age_seconds(self) -> int:
        return self.session_duration * 60

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies iff the public callback is served over TLS."""
        return urlparse(self.sf_auth_callback_url).scheme.lower() == "https"

    def blank_required_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not str(getattr(self, name) or "").strip()]

    @classmethod
    def load(
        cls,
        config_path: str = "config.json",
        secrets_path: str = "secrets.yml",
    ) -> "GatewayConfig":
        """Load config from files with env var overrides.

        Raises:
            ConfigMissingError: If any required value is absent or blank.
        """
        config_data: dict[str, Any] = {}

        json_path = Path(config_path)
        if json_path.exists():
            with open(json_path, encoding="utf-8") as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                config_data.update({str(k).lower(): v for k, v in loaded.items()})

        repo_root = _find_repo_root(start=Path(__file__))
        config_data.update(_load_yaml_mapping(repo_root / "config.yml"))
        config_data.update(_load_yaml_mapping(Path(secrets_path)))

        # Init kwargs beat env vars in pydantic-settings; drop file values
        # that the environment overrides.
        for key in list(config_data):
            if key.upper() in os.environ:
                del config_data[key]

        try:
            config = cls(**config_data)
        except ValidationError as e:
            missing = [
                str(err["loc"][0])
                for err in e.errors()
                if err.get("type") == "missing" and err.get("loc")
            ]
            if missing:
                raise ConfigMissingError([m.upper() for m in missing]) from e
            raise

        blank = config.blank_required_fields()
        if blank:
            raise ConfigMissingError([b.upper() for b in blank])
        return config
