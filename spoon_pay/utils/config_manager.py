import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class ConfigManager:
    """Read-only view over the project's config.json.

    Payment settings live under the ``x402`` key. Missing or unreadable files
    yield an empty configuration so that environment variables can supply
    everything instead.
    """

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else Path("config.json")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Error loading config %s: %s", self.config_file, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: top-level value is not an object", self.config_file)
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration item by dotted key, e.g. ``x402.client.private_key_env``."""
        keys = key.split(".")
        value = self.config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def list_config(self) -> Dict[str, Any]:
        return self.config
