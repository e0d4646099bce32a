"""Core data models for voice field capture."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional


class RecordingState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class FieldKind(str, Enum):
    NAME = "name"
    PHONE = "phone"
    EMAIL = "email"
    PASSWORD = "password"
    LOCATION = "location"
    FREEFORM_ANSWER = "freeform_answer"


@dataclass(frozen=True)
class FieldSpec:
    """What a session captures and how the model should answer.

    ``prompt_template`` must contain a ``{transcript}`` placeholder. ``keys``
    names the one or two JSON keys expected back; ``required_keys`` (default:
    all of them) must be non-empty for the capture to count as complete.
    """

    kind: FieldKind
    keys: tuple[str, ...]
    prompt_template: str
    required_keys: tuple[str, ...] = ()
    instructions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.keys or len(self.keys) > 2:
            raise ValueError("FieldSpec needs one or two keys")
        if "{transcript}" not in self.prompt_template:
            raise ValueError("prompt_template must contain {transcript}")
        if not self.required_keys:
            object.__setattr__(self, "required_keys", tuple(self.keys))
        unknown = set(self.required_keys) - set(self.keys)
        if unknown:
            raise ValueError(f"required keys not in keys: {sorted(unknown)}")

    @property
    def primary_key(self) -> str:
        return self.keys[0]


@dataclass
class AudioBuffer:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    sample_width: int = 2

    @property
    def byte_length(self) -> int:
        return len(self.pcm16_bytes)

    @property
    def duration_s(self) -> float:
        frame_bytes = self.channels * self.sample_width
        if not frame_bytes or not self.sample_rate:
            return 0.0
        return self.byte_length / frame_bytes / self.sample_rate


@dataclass(frozen=True)
class PipelineConfig:
    service_id: str
    model_id: str
    source_language: str
    target_language: Optional[str] = None


@dataclass(frozen=True)
class ExtractionResult:
    values: Mapping[str, Optional[str]] = field(default_factory=dict)
    raw: str = ""
    primary_key: str = ""

    @property
    def value(self) -> Optional[str]:
        if self.primary_key:
            return self.values.get(self.primary_key)
        return next(iter(self.values.values()), None)

    def is_complete(self, spec: FieldSpec) -> bool:
        return all(self.values.get(key) for key in spec.required_keys)


class CancelToken:
    """Flag shared between a session and its pipeline run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
