"""Protocol interfaces used by VoiceFieldSession."""

from __future__ import annotations

from typing import Optional, Protocol

from models import AudioBuffer, CancelToken, ExtractionResult, FieldSpec, PipelineConfig


class AudioCapture(Protocol):
    def request_permission(self) -> bool: ...

    def start(self) -> None: ...

    def stop(self) -> AudioBuffer: ...

    @property
    def is_active(self) -> bool: ...


class TranscriptionClient(Protocol):
    def resolve_pipeline(
        self,
        source_language: str,
        target_language: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> PipelineConfig: ...

    def transcribe(
        self,
        audio: AudioBuffer,
        config: PipelineConfig,
        cancel: Optional[CancelToken] = None,
    ) -> str: ...


class FieldExtractor(Protocol):
    def extract(
        self,
        transcript: str,
        spec: FieldSpec,
        cancel: Optional[CancelToken] = None,
    ) -> ExtractionResult: ...


class FeedbackSink(Protocol):
    def notify_success(self) -> None: ...

    def notify_error(self) -> None: ...
