#!/usr/bin/env python3
"""
Configuration management for the transcript fetcher.

Loads endpoint, timeout and payload-format settings from environment
variables (and an optional .env file) with sensible defaults and validation.
"""

import os
from dataclasses import dataclass
from typing import Optional, Dict, Any

from dotenv import load_dotenv

from logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

# Payload formats that can be requested explicitly through the track URL
SUPPORTED_PAYLOAD_FORMATS = ("", "json3")


@dataclass
class TranscriptConfig:
    """Settings for the extractor and the bridge."""

    # Upstream endpoint
    base_url: str = "https://www.youtube.com"
    player_path: str = "/youtubei/v1/player"
    user_agent: str = DEFAULT_USER_AGENT

    # Timeouts in seconds; catalog_timeout None means unbounded
    payload_timeout: float = 15.0
    catalog_timeout: Optional[float] = None
    bridge_timeout: float = 15.0

    # "" keeps the track URL untouched, "json3" asks for the segment-event format
    payload_format: str = ""

    @property
    def player_url(self) -> str:
        return self.base_url.rstrip("/") + self.player_path

    @classmethod
    def from_env(cls) -> 'TranscriptConfig':
        """Load configuration from environment variables with validation."""
        load_dotenv()

        catalog_timeout = cls._parse_float_env("TRANSCRIPT_CATALOG_TIMEOUT", 0.0, min_val=0.0, max_val=120.0)

        config = cls(
            base_url=os.getenv("TRANSCRIPT_BASE_URL", cls.base_url),
            player_path=os.getenv("TRANSCRIPT_PLAYER_PATH", cls.player_path),
            user_agent=os.getenv("TRANSCRIPT_USER_AGENT", DEFAULT_USER_AGENT),

            payload_timeout=cls._parse_float_env("TRANSCRIPT_PAYLOAD_TIMEOUT", 15.0, min_val=1.0, max_val=120.0),
            catalog_timeout=catalog_timeout or None,
            bridge_timeout=cls._parse_float_env("TRANSCRIPT_BRIDGE_TIMEOUT", 15.0, min_val=1.0, max_val=120.0),

            payload_format=os.getenv("TRANSCRIPT_PAYLOAD_FORMAT", "").strip().lower(),
        )

        config._validate_config()
        config._log_config()

        return config

    @staticmethod
    def _parse_float_env(env_var: str, default: float, min_val: Optional[float] = None,
                         max_val: Optional[float] = None) -> float:
        """Parse numeric environment variable, clamping to the given bounds."""
        try:
            value = float(os.getenv(env_var, str(default)))
        except (ValueError, TypeError):
            logger.error(f"Invalid value for {env_var}: {os.getenv(env_var)}, using default {default}")
            return default

        if min_val is not None and value < min_val:
            logger.warning(f"{env_var}={value} is below minimum {min_val}, using {min_val}")
            return min_val

        if max_val is not None and value > max_val:
            logger.warning(f"{env_var}={value} is above maximum {max_val}, using {max_val}")
            return max_val

        return value

    def _validate_config(self) -> None:
        """Log warnings for problematic setting combinations."""
        warnings = []

        if self.payload_timeout > self.bridge_timeout:
            warnings.append(
                f"Payload timeout ({self.payload_timeout}s) exceeds bridge timeout "
                f"({self.bridge_timeout}s) - slow payloads will be dropped by the bridge"
            )

        if self.catalog_timeout is not None and self.catalog_timeout > self.bridge_timeout:
            warnings.append(
                f"Catalog timeout ({self.catalog_timeout}s) exceeds bridge timeout ({self.bridge_timeout}s)"
            )

        if self.payload_format not in SUPPORTED_PAYLOAD_FORMATS:
            warnings.append(f"Unknown payload format {self.payload_format!r}, track URLs are used as-is")
            self.payload_format = ""

        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

    def _log_config(self) -> None:
        logger.info("Transcript configuration loaded:")
        logger.info(f"  Endpoint: {self.player_url}")
        logger.info(f"  Timeouts: payload={self.payload_timeout}s, catalog={self.catalog_timeout}, bridge={self.bridge_timeout}s")
        logger.info(f"  Payload format: {self.payload_format or 'track default'}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "endpoint": {
                "base_url": self.base_url,
                "player_path": self.player_path,
            },
            "timeouts": {
                "payload_timeout": self.payload_timeout,
                "catalog_timeout": self.catalog_timeout,
                "bridge_timeout": self.bridge_timeout,
            },
            "payload_format": self.payload_format,
        }


# Global configuration instance
_transcript_config: Optional[TranscriptConfig] = None


def get_transcript_config() -> TranscriptConfig:
    """Get the global transcript configuration instance."""
    global _transcript_config
    if _transcript_config is None:
        _transcript_config = TranscriptConfig.from_env()
    return _transcript_config


def reload_transcript_config() -> TranscriptConfig:
    """Reload configuration from environment variables."""
    global _transcript_config
    _transcript_config = TranscriptConfig.from_env()
    return _transcript_config
