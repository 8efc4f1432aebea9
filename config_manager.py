"""
Configuration management for the annotation suggestion service.
Handles loading, validating, and providing access to application settings.
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "recommender_config.json"


@dataclass
class AppConfig:
    """Application configuration settings."""
    host: str
    port: int
    debug: bool


@dataclass
class RecommenderConfig:
    """Prediction run and suggestion display settings."""
    max_workers: int
    auto_switch_predictions: bool
    show_all_predictions: bool
    max_suggestions_per_document: int


@dataclass
class ExternalConfig:
    """HTTP settings for remote recommenders."""
    connect_timeout: float
    read_timeout: float
    verify_ssl: bool


@dataclass
class EvaluationSettings:
    """Default learning-curve evaluation settings."""
    train_fraction: float
    step: float
    min_samples: int
    shuffle: bool
    seed: int


@dataclass
class LoggingSettings:
    debug: bool


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manages application configuration loading and access."""

    def __init__(self, config_file: str = DEFAULT_CONFIG_FILE):
        self.config_file = Path(config_file)
        self._config: Optional[Dict[str, Any]] = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables."""
        self._config = self._get_default_config()

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    self._merge_config(json.load(f))
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring invalid config file {self.config_file}: {e}")

        self._override_with_env()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "app": {
                "host": "0.0.0.0",
                "port": 22582,
                "debug": False
            },
            "recommender": {
                "max_workers": 2,
                "auto_switch_predictions": False,
                "show_all_predictions": False,
                "max_suggestions_per_document": 0
            },
            "external": {
                "connect_timeout": 5.0,
                "read_timeout": 60.0,
                "verify_ssl": True
            },
            "evaluation": {
                "train_fraction": 0.8,
                "step": 8,
                "min_samples": 10,
                "shuffle": False,
                "seed": 0
            },
            "logging": {
                "debug": False
            }
        }

    def _merge_config(self, file_config: Dict[str, Any]) -> None:
        """Merge file configuration with current config."""
        for section, values in file_config.items():
            if section in self._config and isinstance(values, dict):
                self._config[section].update(values)
            else:
                self._config[section] = values

    def _override_with_env(self) -> None:
        """Override configuration with environment variables."""
        overrides = [
            # (variable, section, key, converter)
            ("APP_HOST", "app", "host", str),
            ("APP_PORT", "app", "port", int),
            ("APP_DEBUG", "app", "debug", _env_flag),
            ("RECOMMENDER_MAX_WORKERS", "recommender", "max_workers", int),
            ("RECOMMENDER_AUTO_SWITCH", "recommender", "auto_switch_predictions", _env_flag),
            ("RECOMMENDER_SHOW_ALL", "recommender", "show_all_predictions", _env_flag),
            ("RECOMMENDER_MAX_SUGGESTIONS", "recommender", "max_suggestions_per_document", int),
            ("EXTERNAL_CONNECT_TIMEOUT", "external", "connect_timeout", float),
            ("EXTERNAL_READ_TIMEOUT", "external", "read_timeout", float),
            ("EXTERNAL_VERIFY_SSL", "external", "verify_ssl", _env_flag),
            ("EVALUATION_TRAIN_FRACTION", "evaluation", "train_fraction", float),
            ("EVALUATION_STEP", "evaluation", "step", float),
            ("EVALUATION_MIN_SAMPLES", "evaluation", "min_samples", int),
            ("EVALUATION_SHUFFLE", "evaluation", "shuffle", _env_flag),
            ("LOG_DEBUG", "logging", "debug", _env_flag),
        ]
        for variable, section, key, convert in overrides:
            value = os.getenv(variable)
            if value:
                self._config[section][key] = convert(value)

    def get_app_config(self) -> AppConfig:
        """Get application configuration."""
        app_config = self._config["app"]
        return AppConfig(
            host=app_config["host"],
            port=int(app_config["port"]),
            debug=bool(app_config["debug"])
        )

    def get_recommender_config(self) -> RecommenderConfig:
        rec_config = self._config["recommender"]
        return RecommenderConfig(
            max_workers=int(rec_config["max_workers"]),
            auto_switch_predictions=bool(rec_config["auto_switch_predictions"]),
            show_all_predictions=bool(rec_config["show_all_predictions"]),
            max_suggestions_per_document=int(rec_config["max_suggestions_per_document"])
        )

    def get_external_config(self) -> ExternalConfig:
        ext_config = self._config["external"]
        return ExternalConfig(
            connect_timeout=float(ext_config["connect_timeout"]),
            read_timeout=float(ext_config["read_timeout"]),
            verify_ssl=bool(ext_config["verify_ssl"])
        )

    def get_evaluation_config(self) -> EvaluationSettings:
        eval_config = self._config["evaluation"]
        step = eval_config["step"]
        # Whole-number steps are sample counts, values below 1 a fraction of the train capacity
        if float(step) >= 1:
            step = int(step)
        return EvaluationSettings(
            train_fraction=float(eval_config["train_fraction"]),
            step=step,
            min_samples=int(eval_config["min_samples"]),
            shuffle=bool(eval_config["shuffle"]),
            seed=int(eval_config["seed"])
        )

    def get_logging_config(self) -> LoggingSettings:
        return LoggingSettings(debug=bool(self._config["logging"]["debug"]))

    def get_config(self) -> Dict[str, Any]:
        """Get raw configuration dictionary."""
        return self._config.copy()

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def save_config(self) -> None:
        """Save current configuration to file."""
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)


# Global configuration instance
config_manager = ConfigManager()


def get_app_config() -> AppConfig:
    """Get application configuration."""
    return config_manager.get_app_config()


def get_recommender_config() -> RecommenderConfig:
    return config_manager.get_recommender_config()


def get_external_config() -> ExternalConfig:
    return config_manager.get_external_config()


def get_evaluation_config() -> EvaluationSettings:
    return config_manager.get_evaluation_config()


def get_logging_config() -> LoggingSettings:
    return config_manager.get_logging_config()


def reload_config() -> None:
    """Reload configuration."""
    config_manager.reload()


def save_config() -> None:
    """Save configuration to file."""
    config_manager.save_config()
