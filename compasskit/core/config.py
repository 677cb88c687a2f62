"""Configuration loader with YAML files and environment variable overrides."""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

import yaml


SENSOR_VARIANTS = ("auto", "matrix", "dual_vector")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "filter": {
        "alpha": 0.15,
        "emit_threshold_deg": 0.5,
    },
    "sensors": {
        "variant": "auto",
    },
    "timeline": {
        "size": 200,
    },
}


@dataclass(frozen=True)
class CompassSettings:
    """Static per-session settings for the heading pipeline."""

    alpha: float = 0.15
    emit_threshold_deg: float = 0.5
    sensor_variant: str = "auto"
    timeline_size: int = 200

    def __post_init__(self) -> None:
        if not 0.0 < self.alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {self.alpha}")
        if self.emit_threshold_deg < 0.0:
            raise ValueError(f"emit_threshold_deg must be >= 0, got {self.emit_threshold_deg}")
        if self.sensor_variant not in SENSOR_VARIANTS:
            raise ValueError(f"sensor_variant must be one of {SENSOR_VARIANTS}, got {self.sensor_variant!r}")
        if self.timeline_size <= 0:
            raise ValueError("timeline_size must be > 0")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompassSettings":
        filt = data.get("filter") or {}
        sensors = data.get("sensors") or {}
        timeline = data.get("timeline") or {}
        return cls(
            alpha=float(filt.get("alpha", cls.alpha)),
            emit_threshold_deg=float(filt.get("emit_threshold_deg", cls.emit_threshold_deg)),
            sensor_variant=str(sensors.get("variant", cls.sensor_variant)),
            timeline_size=int(timeline.get("size", cls.timeline_size)),
        )


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


class Config:
    """Configuration loader with environment variable override support."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize config loader.

        Args:
            config_dir: Path to config directory. Defaults to $COMPASS_CONFIG_DIR,
                then 'config' relative to project root.
        """
        if config_dir is None:
            config_dir = os.environ.get("COMPASS_CONFIG_DIR")
        if config_dir is None:
            # Find config directory relative to this file
            current_dir = Path(__file__).parent.parent.parent
            config_dir = current_dir / "config"

        self.config_dir = Path(config_dir)
        self._cache: Dict[str, Any] = {}

    def load_settings(self) -> CompassSettings:
        """Load pipeline settings, defaults filled in for missing keys."""
        raw = self._load_config("settings.yml", defaults=DEFAULT_SETTINGS)
        return CompassSettings.from_dict(raw)

    def _load_config(self, config_path: str, defaults: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Load a YAML config file with environment variable overrides."""
        full_path = self.config_dir / config_path

        # Check cache first
        cache_key = str(full_path)
        if cache_key in self._cache:
            return copy.deepcopy(self._cache[cache_key])

        config: Dict[str, Any] = {}

        # Load YAML file if it exists
        if full_path.exists():
            try:
                with open(full_path, 'r', encoding='utf-8') as f:
                    config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError):
                # If YAML loading fails, continue with defaults
                config = {}

        if defaults:
            config = _merge(defaults, config)

        # Apply environment variable overrides
        config = self._apply_env_overrides(config, config_path)

        # Cache the result
        self._cache[cache_key] = copy.deepcopy(config)

        return config

    def _apply_env_overrides(self, config: Dict[str, Any], config_path: str) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        COMPASS_SETTINGS_FILTER_ALPHA=0.3 overrides filter.alpha in settings.yml.
        """
        config_name = Path(config_path).stem.upper()
        env_prefix = f"COMPASS_{config_name}_"

        def apply_overrides(obj: Any, path: str = "") -> Any:
            if isinstance(obj, dict):
                result = {}
                for key, value in obj.items():
                    new_path = f"{path}.{key}" if path else key
                    env_key = f"{env_prefix}{new_path.replace('.', '_').upper()}"
                    env_value = os.environ.get(env_key)

                    if env_value is not None:
                        # Try to convert env value to appropriate type
                        if isinstance(value, bool):
                            result[key] = env_value.lower() in ('true', '1', 'yes', 'on')
                        elif isinstance(value, int):
                            try:
                                result[key] = int(env_value)
                            except ValueError:
                                result[key] = value
                        elif isinstance(value, float):
                            try:
                                result[key] = float(env_value)
                            except ValueError:
                                result[key] = value
                        else:
                            result[key] = env_value
                    else:
                        result[key] = apply_overrides(value, new_path)
                return result
            else:
                return obj

        return apply_overrides(config)

    def clear_cache(self):
        """Clear the configuration cache."""
        self._cache.clear()


# Global config instance
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance."""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def load_settings() -> CompassSettings:
    """Convenience function to load pipeline settings."""
    return get_config().load_settings()
