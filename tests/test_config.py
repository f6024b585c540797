"""Tests for configuration parsing."""

import pytest

from fit_buddy.config import Settings, parse_storage_backend


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, "file"), ("", "file"), (" Local ", "file"), ("SUPABASE", "supabase")],
)
def test_parse_storage_backend(raw: str | None, expected: str) -> None:
    assert parse_storage_backend(raw) == expected


def test_parse_storage_backend_rejects_unknown() -> None:
    with pytest.raises(ValueError):
        parse_storage_backend("redis")


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    monkeypatch.setenv("VOICE_SEND_QUEUE_SIZE", "8")

    settings = Settings()

    assert settings.openai_api_key == "env-key"
    assert settings.voice_send_queue_size == 8
    assert settings.voice_output_sample_rate == 24000
