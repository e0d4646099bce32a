from __future__ import annotations

from pathlib import Path

import pytest

from config import DEFAULT_INFERENCE_ENDPOINT, JsonConfigStore


def test_config_read_write(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BHASHINI_API_KEY", raising=False)
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_asr_api_key() == ""
    assert store.get_source_language() == "hi"
    assert store.get_hotkey() == "Key.f8"

    store.set_asr_api_key("abc")
    store.set_source_language("mr")
    store.set_hotkey("Key.f9")

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_asr_api_key() == "abc"
    assert reloaded.get_source_language() == "mr"
    assert reloaded.get_hotkey() == "Key.f9"


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_source_language() == "hi"
    assert store.get_request_timeout_s() == 15.0


def test_api_keys_fall_back_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BHASHINI_API_KEY", "env-asr")
    monkeypatch.setenv("DASHSCOPE_API_KEY", "env-llm")
    store = JsonConfigStore(path=tmp_path / "config.json")

    assert store.get_asr_api_key() == "env-asr"
    assert store.get_llm_api_key() == "env-llm"

    store.set_llm_api_key("stored-llm")
    assert store.get_llm_api_key() == "stored-llm"


def test_service_settings(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text('{"request_timeout_s": "7.5", "max_recording_s": 0, "llm_model": "qwen-max"}', encoding="utf-8")

    settings = JsonConfigStore(path=path).service_settings()

    assert settings.request_timeout_s == 7.5
    assert settings.max_recording_s is None
    assert settings.llm_model == "qwen-max"
    assert settings.asr_inference_endpoint == DEFAULT_INFERENCE_ENDPOINT


def test_bad_number_uses_default(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text('{"max_recording_s": "soon"}', encoding="utf-8")

    assert JsonConfigStore(path=path).get_max_recording_s() == 30.0


def test_hotkey_hold_to_talk(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_hotkey_hold_to_talk() is False

    store.set_hotkey_hold_to_talk(True)
    assert JsonConfigStore(path=path).get_hotkey_hold_to_talk() is True

    path.write_text('{"hotkey_hold_to_talk": "yes"}', encoding="utf-8")
    assert store.get_hotkey_hold_to_talk() is False
