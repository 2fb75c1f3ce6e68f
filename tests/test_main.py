import logging

from streamscribe.__main__ import main


def test_noisy_libraries_log_warnings_only() -> None:
    for name in ("httpx", "httpcore", "faster_whisper"):
        assert logging.getLogger(name).level == logging.WARNING


def test_usage_without_arguments() -> None:
    assert main([]) == 2


def test_missing_audio_file_exits_with_error(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert main([str(tmp_path / "missing.wav"), str(tmp_path / "config.json")]) == 1
