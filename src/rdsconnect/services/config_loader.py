"""Configuration loader for rdsconnect."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from rdsconnect.constants import CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE
from rdsconnect.errors import ConnectError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "regions",
        "db_username",
        "db_port",
        "engines",
        "state_dir",
        "credential_file",
        "token_lifetime_minutes",
        "safety_margin_minutes",
        "retry_backoff_seconds",
        "region_timeout_seconds",
        "api_connect_timeout",
        "api_read_timeout",
        "api_max_retries",
        "classifier_timeout_seconds",
        "ssl_ca",
        "default_cluster",
        "monitor_role",
        "verbose",
        "log_file",
    }

    def resolve_path(self, config_path: Optional[str]) -> Optional[str]:
        if config_path:
            return config_path

        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return env_path

        default_path = os.path.expanduser(DEFAULT_CONFIG_FILE)
        if os.path.exists(default_path):
            return default_path
        return None

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConnectError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConnectError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConnectError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConnectError(f"Unknown configuration keys: {unknown_list}")

        return parsed
