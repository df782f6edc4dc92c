"""Configuration loader for the BlueZ client.

Settings come from an optional JSON file (explicit path or the
``BLUEZ_CLIENT_CONFIG`` environment variable) and are then overridden by
``BLUEZ_CLIENT_<FIELD>`` environment variables, e.g.
``BLUEZ_CLIENT_AGENT_TIMEOUT_SECONDS=30``.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from .bluez.constants import AGENT_PATH

logger = logging.getLogger(__name__)

CONFIG_ENV = "BLUEZ_CLIENT_CONFIG"
ENV_PREFIX = "BLUEZ_CLIENT_"

BUS_TYPES = ("system", "session")
EXECUTION_MODES = ("async", "blocking")


@dataclass
class ClientConfig:
    """Client configuration with defaults suitable for a system-bus BlueZ."""

    log_level: str = "info"
    bus_type: str = "system"
    execution_mode: str = "async"

    # Adapter path used by client.adapter() without arguments ("auto" = first found)
    adapter: str = "auto"

    agent_path: str = AGENT_PATH
    # BlueZ gives up on an agent call after the D-Bus reply timeout (25s by
    # default); answer before that.
    agent_timeout_seconds: float = 20.0

    # How long a blocking caller waits for one operation (None = forever)
    blocking_call_timeout_seconds: float | None = None

    def validate(self) -> None:
        if self.bus_type not in BUS_TYPES:
            raise ValueError(f"bus_type must be one of {BUS_TYPES}, got {self.bus_type!r}")
        if self.execution_mode not in EXECUTION_MODES:
            raise ValueError(
                f"execution_mode must be one of {EXECUTION_MODES}, got {self.execution_mode!r}"
            )
        if self.agent_timeout_seconds <= 0:
            raise ValueError("agent_timeout_seconds must be positive")

    def to_dict(self) -> dict:
        return asdict(self)

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))
        logger.info("Settings saved to %s", path)

    def _apply(self, data: dict, source: str) -> None:
        known = {f.name: f for f in fields(self)}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown setting %r from %s", key, source)
                continue
            setattr(self, key, value)

    @staticmethod
    def _coerce(current, raw: str):
        if isinstance(current, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(current, float) or current is None:
            if raw.strip().lower() in ("", "none", "null"):
                return None
            return float(raw)
        if isinstance(current, int):
            return int(raw)
        return raw

    @classmethod
    def load(cls, path: str | Path | None = None, environ: dict | None = None) -> "ClientConfig":
        """Load configuration from a JSON file plus environment overrides."""
        environ = os.environ if environ is None else environ
        config = cls()

        file_path = path or environ.get(CONFIG_ENV)
        if file_path:
            file_path = Path(file_path)
            if file_path.exists():
                try:
                    config._apply(json.loads(file_path.read_text()), str(file_path))
                    logger.info("Loaded settings from %s", file_path)
                except (json.JSONDecodeError, TypeError, AttributeError) as e:
                    logger.error("Failed to parse %s: %s, using defaults", file_path, e)
            else:
                logger.warning("Config file %s does not exist, using defaults", file_path)

        for f in fields(config):
            env_key = ENV_PREFIX + f.name.upper()
            if env_key not in environ:
                continue
            try:
                setattr(config, f.name, cls._coerce(getattr(config, f.name), environ[env_key]))
            except ValueError as e:
                logger.error("Bad value for %s: %s", env_key, e)

        config.validate()
        return config
