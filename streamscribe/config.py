"""
Configuration for streamscribe.

Settings live in a JSON file merged over DEFAULT_CONFIG, so a config file
only needs the keys it changes. `PipelineConfig.from_dict` turns the merged
dictionary into typed settings for the session; provider credentials come
from the file's ``credentials`` section or from the environment.

Example:
    >>> config = load_config()
    >>> pipeline = PipelineConfig.from_dict(config)
    >>> api_key = resolve_credential(pipeline)
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .audio.chunker import ChunkerConfig
from .audio.vad import VadConfig
from .exceptions import ConfigurationError
from .transcription.providers import TranscriptionProvider
from .transcription.retry import RetryConfig

logger = logging.getLogger(__name__)

# Default configuration file path
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "streamscribe" / "config.json"

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "provider": "openai",
    "language": "auto",
    "audio": {
        "sample_rate": None,  # Use device native rate, resampled to 16kHz
        "channels": 1,
        "device_index": None,
    },
    "chunking": {
        "duration_secs": 90,
        "overlap_secs": 2.0,
    },
    "vad": {
        "enabled": False,
        "threshold": 0.5,
    },
    "credentials": {},
    "local": {
        "model_path": None,
        "device": "auto",
        "compute_type": "int8",
        "keep_loaded": False,
        "idle_unload_minutes": 10,
    },
    "encoder": {
        "format": "mp3",
    },
    "retry": {
        "max_retries": 3,
        "base_delay_ms": 1000,
        "max_delay_ms": 16000,
    },
}


def merge_config(default: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge loaded configuration with defaults.

    Values from the loaded config override defaults. For nested
    dictionaries, merging is performed recursively. Neither input is
    modified.

    Args:
        default: The default configuration dictionary.
        loaded: The loaded configuration dictionary.

    Returns:
        Merged configuration dictionary.
    """
    result = copy.deepcopy(default)

    for key, value in loaded.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = merge_config(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from a JSON file.

    A missing file is not an error: the defaults are returned.

    Args:
        config_path: Path to the config file. If None, uses
                    ~/.config/streamscribe/config.json.

    Returns:
        The file's settings merged over DEFAULT_CONFIG.

    Raises:
        ConfigurationError: If the file exists but cannot be read or parsed.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded_config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file: {e}") from e

    if not isinstance(loaded_config, dict):
        raise ConfigurationError(f"Config file must contain a JSON object: {path}")

    logger.info(f"Configuration loaded from {path}")
    return merge_config(DEFAULT_CONFIG, loaded_config)


def save_config(config: Dict[str, Any], config_path: Optional[Path] = None) -> None:
    """
    Save a configuration dictionary to a JSON file.

    Creates the parent directory if it doesn't exist.

    Raises:
        ConfigurationError: If the file cannot be written.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    try:
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)

        logger.info(f"Configuration saved to {path}")
    except OSError as e:
        raise ConfigurationError(f"Failed to save config file: {e}") from e


@dataclass
class PipelineConfig:
    """Typed view of a merged configuration dictionary."""

    provider: TranscriptionProvider = TranscriptionProvider.OPENAI
    language: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: int = 1
    device_index: Optional[int] = None
    chunker: ChunkerConfig = field(default_factory=ChunkerConfig)
    vad: VadConfig = field(default_factory=VadConfig)
    encoder_format: str = "mp3"
    retry: RetryConfig = field(default_factory=RetryConfig)
    credentials: Dict[str, str] = field(default_factory=dict)
    model_path: Optional[str] = None
    model_device: str = "auto"
    compute_type: str = "int8"
    keep_loaded: bool = False
    idle_unload_secs: float = 600.0

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PipelineConfig":
        """
        Build typed settings from a configuration dictionary.

        Missing keys fall back to DEFAULT_CONFIG.

        Raises:
            ConfigurationError: If a value is of the wrong type or out of range.
        """
        merged = merge_config(DEFAULT_CONFIG, config)
        audio = merged["audio"]
        chunking = merged["chunking"]
        vad = merged["vad"]
        local = merged["local"]
        retry = merged["retry"]

        # Map "auto" language to None for auto-detection
        language = merged.get("language")
        if not language or language == "auto":
            language = None

        try:
            return cls(
                provider=TranscriptionProvider.parse(str(merged["provider"])),
                language=language,
                sample_rate=audio.get("sample_rate"),
                channels=int(audio.get("channels", 1)),
                device_index=audio.get("device_index"),
                chunker=ChunkerConfig(
                    chunk_duration_secs=float(chunking["duration_secs"]),
                    overlap_secs=float(chunking["overlap_secs"]),
                ),
                vad=VadConfig(
                    enabled=bool(vad["enabled"]),
                    threshold=float(vad["threshold"]),
                ),
                encoder_format=str(merged["encoder"]["format"]).lower(),
                retry=RetryConfig(
                    max_retries=int(retry["max_retries"]),
                    base_delay_ms=int(retry["base_delay_ms"]),
                    max_delay_ms=int(retry["max_delay_ms"]),
                ),
                credentials=dict(merged.get("credentials") or {}),
                model_path=local.get("model_path"),
                model_device=str(local.get("device", "auto")),
                compute_type=str(local.get("compute_type", "int8")),
                keep_loaded=bool(local.get("keep_loaded", False)),
                idle_unload_secs=float(local.get("idle_unload_minutes", 10)) * 60.0,
            )
        except (TypeError, ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def resolve_credential(
    config: PipelineConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Find the credential for the configured provider.

    Remote providers need an API key; the local provider needs a model
    path. The config file wins over the environment.

    Args:
        config: Typed pipeline settings.
        environ: Environment to consult. Defaults to os.environ.

    Returns:
        The API key or model path.

    Raises:
        ConfigurationError: If no credential is configured.
    """
    environ = os.environ if environ is None else environ
    provider = config.provider

    if provider.is_local:
        credential = config.model_path or config.credentials.get(provider.value)
    else:
        credential = config.credentials.get(provider.value)

    if not credential:
        credential = environ.get(provider.env_var)

    if not credential or not str(credential).strip():
        what = "model path" if provider.is_local else "API key"
        raise ConfigurationError(
            f"No {what} for {provider.value}: set it in the config file or {provider.env_var}"
        )

    return str(credential).strip()
