"""Configuration models for supportkb.

This module defines the configuration structure for collection, storage,
the language model and the learning schedule.
"""

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from supportkb.sources.slack import SlackConfig

logger = logging.getLogger(__name__)


class StorageConfig(BaseModel):
    """Configuration for the durable store."""

    backend: Literal["sqlite", "memory"] = Field(default="sqlite", description="Storage backend")
    db_path: str = Field(default="supportkb.db", description="SQLite file, relative to the data directory")


class LLMConfig(BaseModel):
    """Configuration for the summarization / answering model."""

    model_id: str = "gemini/gemini-1.5-flash"
    temperature: float = 0.3
    max_tokens: int = 2048
    api_key_env: str = Field(default="GEMINI_API_KEY", description="Environment variable holding the API key")


class LearningConfig(BaseModel):
    """Configuration for learning sessions and answering."""

    interval_hours: float = Field(default=24.0, gt=0, description="Hours between scheduled learning sessions")
    fallback_on_failure: bool = Field(
        default=False,
        description="Append raw records to the knowledge text when summarization fails",
    )
    confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0, description="Minimum confidence to answer")


class AppConfig(BaseModel):
    """Main configuration for supportkb."""

    slack: SlackConfig = Field(default_factory=SlackConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)


class ConfigLoader:
    """Utility class for loading configuration from YAML files."""

    @staticmethod
    def load(path: str) -> AppConfig:
        """Load configuration from a YAML file and apply environment overrides.

        Args:
            path: Path to the YAML configuration file. A missing file yields defaults.

        Returns:
            AppConfig: Loaded configuration object.
        """
        p = Path(path)
        raw_data: dict = {}
        if p.exists():
            with open(p, "r") as f:
                raw_data = yaml.safe_load(f) or {}
        else:
            logger.debug(f"Config file {path} not found, using defaults")

        config = AppConfig(**raw_data)
        ConfigLoader.apply_env_overrides(config)
        return config

    @staticmethod
    def apply_env_overrides(config: AppConfig) -> None:
        """Override selected settings from the environment."""
        threshold = os.getenv("CONFIDENCE_THRESHOLD")
        if threshold:
            config.learning.confidence_threshold = float(threshold)

        db_path = os.getenv("SUPPORTKB_DB_PATH")
        if db_path:
            config.storage.db_path = db_path

        bot_user_id = os.getenv("SLACK_BOT_USER_ID")
        if bot_user_id and not config.slack.bot_user_id:
            config.slack.bot_user_id = bot_user_id
