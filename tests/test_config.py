import json

import pytest

from streamscribe.config import (
    DEFAULT_CONFIG,
    PipelineConfig,
    load_config,
    merge_config,
    resolve_credential,
    save_config,
)
from streamscribe.exceptions import ConfigurationError
from streamscribe.transcription.providers import TranscriptionProvider


def test_missing_file_gives_defaults(tmp_path) -> None:
    config = load_config(tmp_path / "config.json")

    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_partial_file_is_merged_over_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"provider": "groq", "chunking": {"duration_secs": 30}}))

    config = load_config(path)

    assert config["provider"] == "groq"
    assert config["chunking"] == {"duration_secs": 30, "overlap_secs": 2.0}
    assert config["vad"] == DEFAULT_CONFIG["vad"]


def test_invalid_json_is_a_configuration_error(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigurationError):
        load_config(path)


def test_non_object_json_is_a_configuration_error(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("[1, 2, 3]")

    with pytest.raises(ConfigurationError):
        load_config(path)


def test_save_creates_parent_directories(tmp_path) -> None:
    path = tmp_path / "nested" / "dir" / "config.json"

    save_config({"provider": "deepgram"}, path)

    assert load_config(path)["provider"] == "deepgram"


def test_merge_does_not_mutate_defaults() -> None:
    merged = merge_config(DEFAULT_CONFIG, {"local": {"keep_loaded": True}})
    merged["credentials"]["openai"] = "sk-test"

    assert DEFAULT_CONFIG["local"]["keep_loaded"] is False
    assert DEFAULT_CONFIG["credentials"] == {}


def test_defaults_map_to_pipeline_settings() -> None:
    pipeline = PipelineConfig.from_dict(DEFAULT_CONFIG)

    assert pipeline.provider is TranscriptionProvider.OPENAI
    assert pipeline.language is None
    assert pipeline.chunker.chunk_duration_secs == 90.0
    assert pipeline.chunker.overlap_secs == 2.0
    assert pipeline.vad.enabled is False
    assert pipeline.vad.threshold == 0.5
    assert pipeline.keep_loaded is False
    assert pipeline.idle_unload_secs == 600.0
    assert pipeline.retry.max_retries == 3


def test_explicit_values_are_typed() -> None:
    pipeline = PipelineConfig.from_dict({
        "provider": "local-whisper",
        "language": "de",
        "vad": {"enabled": True, "threshold": 0.3},
        "local": {"model_path": "/models/small", "idle_unload_minutes": 2},
    })

    assert pipeline.provider is TranscriptionProvider.LOCAL_WHISPER
    assert pipeline.language == "de"
    assert pipeline.vad.enabled and pipeline.vad.threshold == 0.3
    assert pipeline.model_path == "/models/small"
    assert pipeline.idle_unload_secs == 120.0


@pytest.mark.parametrize(
    "config",
    [
        {"provider": "nope"},
        {"chunking": {"duration_secs": 10, "overlap_secs": 10}},
        {"vad": {"threshold": 3}},
        {"chunking": {"duration_secs": "long"}},
    ],
)
def test_invalid_values_are_configuration_errors(config) -> None:
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_dict(config)


def test_config_credential_wins_over_environment() -> None:
    pipeline = PipelineConfig.from_dict({"credentials": {"openai": "from-file"}})

    assert resolve_credential(pipeline, {"OPENAI_API_KEY": "from-env"}) == "from-file"


def test_environment_credential_is_used_as_fallback() -> None:
    pipeline = PipelineConfig.from_dict({"provider": "elevenlabs"})

    assert resolve_credential(pipeline, {"ELEVENLABS_API_KEY": " xi-123 "}) == "xi-123"


def test_missing_credential_names_the_variable() -> None:
    pipeline = PipelineConfig.from_dict({"provider": "groq"})

    with pytest.raises(ConfigurationError, match="GROQ_API_KEY"):
        resolve_credential(pipeline, {})


def test_local_credential_is_the_model_path() -> None:
    configured = PipelineConfig.from_dict({"provider": "local-whisper", "local": {"model_path": "/m/base"}})
    from_env = PipelineConfig.from_dict({"provider": "local-whisper"})

    assert resolve_credential(configured, {}) == "/m/base"
    assert resolve_credential(from_env, {"LOCAL_WHISPER_MODEL_PATH": "/m/env"}) == "/m/env"
