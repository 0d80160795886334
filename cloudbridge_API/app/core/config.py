"""
Configuration management for the cloud bridge.

Settings are grouped into dataclass sections and loaded from the `[cloudbridge]`
table of a TOML file, then overridden from environment variables. The
dispatcher receives a frozen `DispatcherSettings` snapshot and never mutates it.
"""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Any, Optional, List
import tomli
from loguru import logger

from cloudbridge_API.app.core.Utils.Utils import setup_logging


REMOTE_VIDEO_ARGS = ["-c:v", "libx264", "-preset", "ultrafast", "-crf", "22", "-c:a", "aac", "-b:a", "128k"]
LOCAL_VIDEO_ARGS = ["-c:v", "prores_ks", "-profile:v", "3", "-qscale:v", "9", "-vendor", "apl0", "-c:a", "pcm_s16le"]


@dataclass(frozen=True)
class DispatcherSettings:
    """Read-only dispatcher settings, including the bearer credential."""
    base_url: str = "https://api.icloud.com"
    access_token: Optional[str] = field(default=None, repr=False)
    batch_size: int = 100
    max_attempts: int = 5
    initial_backoff: float = 1.0  # seconds; delay after failed attempt n is initial_backoff * 2**n
    max_backoff: float = 60.0
    request_timeout: float = 8.0
    live_photo_upload_path: str = "photos/upload"
    live_photo_download_path: str = "photos/download/{id}"


@dataclass
class DispatcherConfig:
    """Configuration for the sync dispatcher."""
    base_url: str = "https://api.icloud.com"
    access_token: Optional[str] = None
    batch_size: int = 100
    max_attempts: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    request_timeout: float = 8.0
    live_photo_upload_path: str = "photos/upload"
    live_photo_download_path: str = "photos/download/{id}"

    def to_settings(self) -> DispatcherSettings:
        return DispatcherSettings(**asdict(self))


@dataclass
class TranscoderConfig:
    """Configuration for the live-photo transcoder."""
    ffmpeg_path: Optional[str] = None  # If None, FFMPEG_PATH then the system PATH are searched
    temp_dir: Optional[str] = None
    timeout: float = 120.0
    remote_output_args: List[str] = field(default_factory=lambda: list(REMOTE_VIDEO_ARGS))
    local_output_args: List[str] = field(default_factory=lambda: list(LOCAL_VIDEO_ARGS))


@dataclass
class MetadataConfig:
    """Configuration for metadata persistence."""
    storage_path: str = "./cloudbridge_data"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_file: Optional[str] = None


@dataclass
class BridgeConfig:
    """Main configuration class for the cloud bridge."""
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    transcoder: TranscoderConfig = field(default_factory=TranscoderConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_toml(cls, config_path: Optional[Path] = None) -> 'BridgeConfig':
        """
        Load configuration from TOML file.

        Args:
            config_path: Path to config file. If None, uses default location.

        Returns:
            BridgeConfig instance
        """
        if config_path is None:
            possible_paths = [
                Path.home() / ".config" / "cloudbridge" / "config.toml",
                Path("config.toml"),
            ]

            for path in possible_paths:
                if path.exists():
                    config_path = path
                    break
            else:
                logger.warning("No config file found, using defaults")
                config = cls()
                config._apply_env_overrides()
                return config

        logger.info(f"Loading cloudbridge config from: {config_path}")

        try:
            with open(config_path, "rb") as f:
                toml_data = tomli.load(f)

            bridge_config = toml_data.get("cloudbridge", {})

            config = cls(
                dispatcher=DispatcherConfig(**bridge_config.get("dispatcher", {})),
                transcoder=TranscoderConfig(**bridge_config.get("transcoder", {})),
                metadata=MetadataConfig(**bridge_config.get("metadata", {})),
                logging=LoggingConfig(**bridge_config.get("logging", {}))
            )
        except (OSError, tomli.TOMLDecodeError, TypeError) as e:
            logger.error(f"Error loading config from {config_path}: {e}")
            logger.warning("Using default configuration")
            config = cls()

        config._apply_env_overrides()
        return config

    def configure_logging(self) -> None:
        """Route loguru output to stderr (and the configured log file) at the configured level."""
        setup_logging(self.logging.level, self.logging.log_file)

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        env_mappings = {
            "CLOUDBRIDGE_BASE_URL": ("dispatcher", "base_url", str),
            "CLOUDBRIDGE_ACCESS_TOKEN": ("dispatcher", "access_token", str),
            "CLOUDBRIDGE_BATCH_SIZE": ("dispatcher", "batch_size", int),
            "CLOUDBRIDGE_MAX_ATTEMPTS": ("dispatcher", "max_attempts", int),
            "CLOUDBRIDGE_INITIAL_BACKOFF": ("dispatcher", "initial_backoff", float),
            "CLOUDBRIDGE_REQUEST_TIMEOUT": ("dispatcher", "request_timeout", float),
            "CLOUDBRIDGE_METADATA_DIR": ("metadata", "storage_path", str),
            "CLOUDBRIDGE_TEMP_DIR": ("transcoder", "temp_dir", str),
            "FFMPEG_PATH": ("transcoder", "ffmpeg_path", str),
            "CLOUDBRIDGE_LOG_LEVEL": ("logging", "level", lambda x: x.upper()),
        }

        for env_var, (section, attr, converter) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                try:
                    section_obj = getattr(self, section)
                    setattr(section_obj, attr, converter(value))
                    logger.debug(f"Override from env: {env_var} -> {section}.{attr}")
                except ValueError as e:
                    logger.warning(f"Failed to apply env override {env_var}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary. The access token is masked."""
        data = asdict(self)
        if data["dispatcher"]["access_token"]:
            data["dispatcher"]["access_token"] = "***"
        return data

    def validate(self) -> List[str]:
        """
        Validate configuration settings.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.dispatcher.base_url.startswith(("http://", "https://")):
            errors.append("dispatcher.base_url must be an http(s) URL")
        if self.dispatcher.batch_size < 1:
            errors.append("dispatcher.batch_size must be >= 1")
        if self.dispatcher.max_attempts < 1:
            errors.append("dispatcher.max_attempts must be >= 1")
        if self.dispatcher.initial_backoff < 0:
            errors.append("dispatcher.initial_backoff must be >= 0")
        if self.dispatcher.max_backoff < self.dispatcher.initial_backoff:
            errors.append("dispatcher.max_backoff must be >= dispatcher.initial_backoff")
        if self.dispatcher.request_timeout <= 0:
            errors.append("dispatcher.request_timeout must be > 0")
        if "{id}" not in self.dispatcher.live_photo_download_path:
            errors.append("dispatcher.live_photo_download_path must contain '{id}'")

        if self.transcoder.timeout <= 0:
            errors.append("transcoder.timeout must be > 0")

        if self.logging.level not in ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"logging.level '{self.logging.level}' is not a valid level")

        return errors
