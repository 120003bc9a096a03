"""Configuration for a regime switching deployment.

RegimeSwitchConfig aggregates the typed per-component models and is
usually loaded from YAML. Settings reads process-level options from the
environment (prefix REGIME_SWITCH_) and can point at the YAML file.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from regime_switch.contracts import RegimeType
from regime_switch.models import StrictModel
from regime_switch.regime.models import RegimeConfig
from regime_switch.transition.models import EvaluatorConfig, ExecutorConfig, TransitionConfig
from regime_switch.utils.yaml_loader import YAMLLoader

logger = logging.getLogger(__name__)


class PersistenceConfig(StrictModel):
    """Where and how often state snapshots are written."""

    backend: Literal["file", "database", "none"] = "file"
    state_dir: Path = Path("state")
    database_url: str | None = None
    save_interval: timedelta = timedelta(minutes=5)
    keep_snapshots: int = Field(default=10, ge=1)

    @model_validator(mode="after")
    def _database_needs_url(self) -> PersistenceConfig:
        if self.backend == "database" and not self.database_url:
            raise ValueError("database backend requires database_url")
        return self


class NotificationConfig(StrictModel):
    queue_size: int = Field(default=100, ge=1)
    fallback_log_path: Path | None = None


class RegimeSwitchConfig(StrictModel):
    """Complete configuration of one symbol's regime switching stack.

    Attributes:
        symbol: Instrument being traded.
        engines: Engine tag to activate for each regime. Regimes without an
            entry keep the current engine.
    """

    symbol: str = "BTCUSDT"
    engines: dict[RegimeType, str] = Field(
        default_factory=lambda: {RegimeType.TRENDING: "trend", RegimeType.RANGING: "grid"}
    )
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    evaluator: EvaluatorConfig = Field(default_factory=EvaluatorConfig)
    transition: TransitionConfig = Field(default_factory=TransitionConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)


class Settings(BaseSettings):
    """Process settings from environment variables and .env."""

    model_config = SettingsConfigDict(env_prefix="REGIME_SWITCH_", env_file=".env", extra="ignore")

    config_path: Path | None = None
    state_dir: Path | None = None
    database_url: str | None = None
    symbol: str | None = None
    log_level: str = "INFO"


def load_config(settings: Settings | None = None) -> RegimeSwitchConfig:
    """Build the effective configuration.

    The YAML file named by settings.config_path is the base; symbol,
    state_dir and database_url from the environment override it.

    Raises:
        FileNotFoundError: If config_path does not exist
        YAMLLoadError: If the YAML file is invalid
    """
    settings = settings or Settings()
    if settings.config_path is not None:
        config = YAMLLoader().load_file(settings.config_path, RegimeSwitchConfig)
        logger.info(f"Loaded configuration from {settings.config_path}")
    else:
        config = RegimeSwitchConfig()

    overrides: dict[str, object] = {}
    if settings.symbol:
        overrides["symbol"] = settings.symbol
    persistence: dict[str, object] = {}
    if settings.state_dir is not None:
        persistence["state_dir"] = settings.state_dir
    if settings.database_url:
        persistence["database_url"] = settings.database_url
        persistence["backend"] = "database"
    if persistence:
        overrides["persistence"] = {**config.persistence.model_dump(), **persistence}
    if overrides:
        config = RegimeSwitchConfig.model_validate({**config.model_dump(), **overrides})
    return config


__all__ = [
    "NotificationConfig",
    "PersistenceConfig",
    "RegimeSwitchConfig",
    "Settings",
    "load_config",
]
