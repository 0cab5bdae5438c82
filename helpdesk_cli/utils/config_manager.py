"""Configuration Management for CLI Settings"""

import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()


class ConfigManager:
    """Manage CLI configuration settings stored as YAML"""

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path(
            os.getenv("HELPDESK_CLI_HOME", Path.home() / ".helpdesk")
        )
        self.config_file = self.config_dir / "config.yaml"

    def ensure_config_dir(self):
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load_config(self) -> dict[str, Any]:
        """Load configuration from file, layered over the defaults"""
        if not self.config_file.exists():
            return self.get_default_config()

        try:
            with open(self.config_file) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            return self.get_default_config()

        return _merge(self.get_default_config(), loaded)

    def save_config(self, config: dict[str, Any]):
        self.ensure_config_dir()
        with open(self.config_file, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False)

    def get_default_config(self) -> dict[str, Any]:
        return {
            "api": {
                "base_url": os.getenv("HELPDESK_API_URL", "http://localhost:8000"),
                "timeout": 30,
                "headers": {},
            },
            "org": {"id": os.getenv("HELPDESK_ORG_ID", "dev-org")},
            "display": {"failed_jobs_per_page": 20},
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'api.base_url')"""
        current: Any = self.load_config()
        for k in key.split("."):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default
        return current

    def set(self, key: str, value: Any):
        """Set configuration value using dot notation"""
        config = self.load_config()
        keys = key.split(".")

        current = config
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value
        self.save_config(config)

    def reset(self):
        self.save_config(self.get_default_config())


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(base[key], value)
        else:
            base[key] = value
    return base


# Global config manager instance
config = ConfigManager()
