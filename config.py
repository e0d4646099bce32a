"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

DEFAULT_CONFIG_ENDPOINT = "https://meity-auth.ulcacontrib.org/ulca/apis/v0/model/getModelsPipeline"
DEFAULT_INFERENCE_ENDPOINT = "https://dhruva-api.bhashini.gov.in/services/inference/pipeline"
DEFAULT_PIPELINE_ID = "64392f96daac500b55c543cd"

DEFAULTS: dict[str, Any] = {
    "asr_api_key": "",
    "asr_pipeline_id": DEFAULT_PIPELINE_ID,
    "asr_config_endpoint": DEFAULT_CONFIG_ENDPOINT,
    "asr_inference_endpoint": DEFAULT_INFERENCE_ENDPOINT,
    "source_language": "hi",
    "llm_api_key": "",
    "llm_model": "qwen-plus",
    "request_timeout_s": 15.0,
    "max_recording_s": 30.0,
    "hotkey": "Key.f8",
    "hotkey_hold_to_talk": False,
}


@dataclass
class ServiceSettings:
    asr_api_key: str
    asr_pipeline_id: str
    asr_config_endpoint: str
    asr_inference_endpoint: str
    source_language: str
    llm_api_key: str
    llm_model: str
    request_timeout_s: float
    max_recording_s: Optional[float]


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voicefill" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_asr_api_key(self) -> str:
        return self._get_str("asr_api_key") or os.getenv("BHASHINI_API_KEY", "")

    def set_asr_api_key(self, key: str) -> None:
        self._set("asr_api_key", key)

    def get_llm_api_key(self) -> str:
        return self._get_str("llm_api_key") or os.getenv("DASHSCOPE_API_KEY", "")

    def set_llm_api_key(self, key: str) -> None:
        self._set("llm_api_key", key)

    def get_source_language(self) -> str:
        return self._get_str("source_language")

    def set_source_language(self, language: str) -> None:
        self._set("source_language", language)

    def get_hotkey(self) -> str:
        return self._get_str("hotkey")

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_hotkey_hold_to_talk(self) -> bool:
        value = self._read_all().get("hotkey_hold_to_talk", DEFAULTS["hotkey_hold_to_talk"])
        return value if isinstance(value, bool) else DEFAULTS["hotkey_hold_to_talk"]

    def set_hotkey_hold_to_talk(self, enabled: bool) -> None:
        self._set("hotkey_hold_to_talk", bool(enabled))

    def get_request_timeout_s(self) -> float:
        return self._get_float("request_timeout_s")

    def get_max_recording_s(self) -> Optional[float]:
        value = self._get_float("max_recording_s")
        return value if value > 0 else None

    def service_settings(self) -> ServiceSettings:
        return ServiceSettings(
            asr_api_key=self.get_asr_api_key(),
            asr_pipeline_id=self._get_str("asr_pipeline_id"),
            asr_config_endpoint=self._get_str("asr_config_endpoint"),
            asr_inference_endpoint=self._get_str("asr_inference_endpoint"),
            source_language=self.get_source_language(),
            llm_api_key=self.get_llm_api_key(),
            llm_model=self._get_str("llm_model"),
            request_timeout_s=self.get_request_timeout_s(),
            max_recording_s=self.get_max_recording_s(),
        )

    def _get_str(self, key: str) -> str:
        value = self._read_all().get(key, DEFAULTS[key])
        return str(value) if value is not None else str(DEFAULTS[key])

    def _get_float(self, key: str) -> float:
        value = self._read_all().get(key, DEFAULTS[key])
        try:
            return float(value)
        except (TypeError, ValueError):
            return float(DEFAULTS[key])

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
