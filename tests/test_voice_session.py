from __future__ import annotations

import json
import threading
import time
from typing import Optional

import httpx

import field_specs
from errors import (
    CAPTURE_FAILED,
    CONFIGURATION_FAILED,
    EMPTY_TRANSCRIPT,
    EXTRACTION_FAILED,
    PERMISSION_DENIED,
    TRANSCRIPTION_FAILED,
    CaptureError,
    TranscriptionError,
)
from extractor import parse_extraction
from models import AudioBuffer, CancelToken, ExtractionResult, FieldSpec, PipelineConfig, RecordingState
from transcriber import PipelineTranscriptionClient
from voice_session import VoiceFieldSession


class FakeCapture:
    def __init__(self, permission: bool = True, pcm: bytes = b"\x01\x00" * 1600) -> None:
        self.permission = permission
        self.pcm = pcm
        self.start_error: Optional[Exception] = None
        self.active = False
        self.starts = 0
        self.stops = 0

    @property
    def is_active(self) -> bool:
        return self.active

    def request_permission(self) -> bool:
        return self.permission

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        if self.active:
            raise CaptureError("recording already in progress")
        self.starts += 1
        self.active = True

    def stop(self) -> AudioBuffer:
        if not self.active:
            raise CaptureError("no active recording")
        self.stops += 1
        self.active = False
        return AudioBuffer(pcm16_bytes=self.pcm)


class FakeTranscriber:
    def __init__(self, transcript: str = "mera naam Raj hai") -> None:
        self.transcript = transcript
        self.resolve_error: Optional[Exception] = None
        self.transcribe_error: Optional[Exception] = None
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()
        self.resolve_calls = 0
        self.transcribe_calls = 0

    def resolve_pipeline(self, source_language, target_language=None, cancel=None) -> PipelineConfig:  # noqa: ANN001
        self.resolve_calls += 1
        if self.resolve_error is not None:
            raise self.resolve_error
        return PipelineConfig(service_id="svc", model_id="model", source_language=source_language)

    def transcribe(self, audio, config, cancel=None) -> str:  # noqa: ANN001
        self.transcribe_calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=2.0)
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.transcript


class FakeExtractor:
    def __init__(self, reply: Optional[dict] = None) -> None:
        self.reply = reply if reply is not None else {"fullName": "Raj"}
        self.error: Optional[Exception] = None
        self.calls: list[str] = []

    def extract(self, transcript: str, spec: FieldSpec, cancel: Optional[CancelToken] = None) -> ExtractionResult:
        self.calls.append(transcript)
        if self.error is not None:
            raise self.error
        return parse_extraction(json.dumps(self.reply), spec, transcript)


class FakeFeedback:
    def __init__(self) -> None:
        self.events: list[str] = []

    def notify_success(self) -> None:
        self.events.append("success")

    def notify_error(self) -> None:
        self.events.append("error")


def _session(
    capture: Optional[FakeCapture] = None,
    transcriber=None,  # noqa: ANN001
    extractor: Optional[FakeExtractor] = None,
    spec: FieldSpec = field_specs.NAME,
    **kwargs,  # noqa: ANN003
) -> VoiceFieldSession:
    kwargs.setdefault("background", False)
    return VoiceFieldSession(
        spec=spec,
        capture=capture or FakeCapture(),
        transcriber=transcriber or FakeTranscriber(),
        extractor=extractor or FakeExtractor(),
        **kwargs,
    )


def _wait_for_state(session: VoiceFieldSession, state: RecordingState, timeout: float = 2.0) -> None:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if session.state == state:
            return
        time.sleep(0.01)


# ---------------------------------------------------------------
# Happy path and the documented scenarios
# ---------------------------------------------------------------

def test_name_is_extracted_and_published() -> None:
    capture = FakeCapture()
    feedback = FakeFeedback()
    transitions: list[tuple[RecordingState, RecordingState]] = []
    results: list[ExtractionResult] = []

    session = _session(
        capture=capture,
        feedback=feedback,
        on_state_change=lambda f, t: transitions.append((f, t)),
        on_result=results.append,
    )
    session.toggle()
    assert session.state == RecordingState.RECORDING
    session.toggle()

    assert session.state == RecordingState.COMPLETED
    assert session.value == "Raj"
    assert session.transcript == "mera naam Raj hai"
    assert capture.is_active is False
    assert [r.value for r in results] == ["Raj"]
    assert feedback.events == ["success"]
    assert transitions == [
        (RecordingState.IDLE, RecordingState.RECORDING),
        (RecordingState.RECORDING, RecordingState.PROCESSING),
        (RecordingState.PROCESSING, RecordingState.COMPLETED),
    ]


def test_empty_transcript_skips_extraction() -> None:
    extractor = FakeExtractor()
    errors: list[tuple[str, str]] = []
    session = _session(
        transcriber=FakeTranscriber(transcript=""),
        extractor=extractor,
        on_error=lambda c, m: errors.append((c, m)),
    )

    session.toggle()
    session.toggle()

    assert session.state == RecordingState.ERROR
    assert session.error_code == EMPTY_TRANSCRIPT
    assert extractor.calls == []
    assert errors[0][0] == EMPTY_TRANSCRIPT


def test_discovery_http_500_is_configuration_failure_with_mic_released() -> None:
    capture = FakeCapture()
    mic_active_during_request: list[bool] = []

    def handler(request: httpx.Request) -> httpx.Response:
        mic_active_during_request.append(capture.is_active)
        return httpx.Response(500, json={"message": "internal"})

    transcriber = PipelineTranscriptionClient(
        api_key="k",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    extractor = FakeExtractor()
    session = _session(capture=capture, transcriber=transcriber, extractor=extractor)

    session.toggle()
    session.toggle()

    assert session.state == RecordingState.ERROR
    assert session.error_code == CONFIGURATION_FAILED
    assert mic_active_during_request == [False]
    assert capture.is_active is False
    assert extractor.calls == []


def test_blank_extracted_value_is_an_extraction_failure() -> None:
    session = _session(extractor=FakeExtractor(reply={"fullName": ""}))

    session.toggle()
    session.toggle()

    assert session.state == RecordingState.ERROR
    assert session.error_code == EXTRACTION_FAILED
    assert session.value is None


def test_location_completes_with_state_only() -> None:
    extractor = FakeExtractor(reply={"fields": {"state": " Bihar ", "district": None}})
    session = _session(spec=field_specs.LOCATION, extractor=extractor)

    session.toggle()
    session.toggle()

    assert session.state == RecordingState.COMPLETED
    assert session.values == {"state": "Bihar", "district": None}
    assert session.value == "Bihar"


# ---------------------------------------------------------------
# Failure mapping
# ---------------------------------------------------------------

def test_permission_denied_goes_to_error_without_starting_capture() -> None:
    capture = FakeCapture(permission=False)
    feedback = FakeFeedback()
    session = _session(capture=capture, feedback=feedback)

    session.toggle()

    assert session.state == RecordingState.ERROR
    assert session.error_code == PERMISSION_DENIED
    assert capture.starts == 0
    assert feedback.events == ["error"]


def test_capture_start_failure_is_reported() -> None:
    capture = FakeCapture()
    capture.start_error = CaptureError("device busy")
    session = _session(capture=capture)

    session.toggle()

    assert session.state == RecordingState.ERROR
    assert session.error_code == CAPTURE_FAILED
    assert session.error_message == "device busy"


def test_transcription_failure_short_circuits() -> None:
    transcriber = FakeTranscriber()
    transcriber.transcribe_error = TranscriptionError("HTTP 502")
    extractor = FakeExtractor()
    session = _session(transcriber=transcriber, extractor=extractor)

    session.toggle()
    session.toggle()

    assert session.state == RecordingState.ERROR
    assert session.error_code == TRANSCRIPTION_FAILED
    assert extractor.calls == []


def test_unexpected_stage_exception_maps_to_stage_code() -> None:
    extractor = FakeExtractor()
    extractor.error = RuntimeError("boom")
    session = _session(extractor=extractor)

    session.toggle()
    session.toggle()

    assert session.state == RecordingState.ERROR
    assert session.error_code == EXTRACTION_FAILED
    assert session.error_message == "boom"


def test_empty_recording_skips_remote_calls() -> None:
    transcriber = FakeTranscriber()
    session = _session(capture=FakeCapture(pcm=b""), transcriber=transcriber)

    session.toggle()
    session.toggle()

    assert session.error_code == EMPTY_TRANSCRIPT
    assert transcriber.resolve_calls == 0


def test_failing_observer_does_not_break_session() -> None:
    def explode(*_args) -> None:  # noqa: ANN002
        raise ValueError("observer bug")

    session = _session(on_state_change=explode, on_result=explode)

    session.toggle()
    session.toggle()

    assert session.state == RecordingState.COMPLETED


# ---------------------------------------------------------------
# Toggle guards and reset
# ---------------------------------------------------------------

def test_toggle_is_noop_in_terminal_states() -> None:
    capture = FakeCapture()
    session = _session(capture=capture)
    session.toggle()
    session.toggle()
    assert session.state == RecordingState.COMPLETED

    session.toggle()
    assert session.state == RecordingState.COMPLETED
    assert capture.starts == 1

    failing = _session(capture=FakeCapture(permission=False))
    failing.toggle()
    failing.toggle()
    assert failing.state == RecordingState.ERROR


def test_toggle_while_processing_does_not_start_second_pipeline() -> None:
    transcriber = FakeTranscriber()
    transcriber.gate = threading.Event()
    extractor = FakeExtractor()
    session = _session(transcriber=transcriber, extractor=extractor, background=True)

    session.toggle()
    session.toggle()
    assert transcriber.entered.wait(timeout=2.0)
    assert session.state == RecordingState.PROCESSING

    session.toggle()
    session.toggle()

    transcriber.gate.set()
    assert session.join(timeout=2.0)

    assert session.state == RecordingState.COMPLETED
    assert transcriber.resolve_calls == 1
    assert transcriber.transcribe_calls == 1
    assert len(extractor.calls) == 1


def test_reset_clears_previous_value() -> None:
    extractor = FakeExtractor()
    session = _session(extractor=extractor)
    session.toggle()
    session.toggle()
    assert session.value == "Raj"

    session.reset()
    assert session.state == RecordingState.IDLE
    assert session.value is None
    assert session.transcript == ""

    extractor.reply = {"fullName": ""}
    session.toggle()
    session.toggle()
    assert session.state == RecordingState.ERROR
    assert session.value is None

    session.reset()
    extractor.reply = {"fullName": "Sita"}
    session.toggle()
    session.toggle()
    assert session.value == "Sita"


def test_reset_while_recording_releases_capture() -> None:
    capture = FakeCapture()
    session = _session(capture=capture)
    session.toggle()
    assert capture.is_active is True

    session.reset()

    assert session.state == RecordingState.IDLE
    assert capture.is_active is False


def test_reset_from_idle_and_error_returns_to_idle() -> None:
    session = _session()
    session.reset()
    assert session.state == RecordingState.IDLE

    failing = _session(capture=FakeCapture(permission=False))
    failing.toggle()
    failing.reset()
    assert failing.state == RecordingState.IDLE
    assert failing.error_code == ""


def test_reset_during_processing_cancels_remaining_stages() -> None:
    transcriber = FakeTranscriber()
    transcriber.gate = threading.Event()
    extractor = FakeExtractor()
    results: list[ExtractionResult] = []
    session = _session(
        transcriber=transcriber,
        extractor=extractor,
        background=True,
        on_result=results.append,
    )

    session.toggle()
    session.toggle()
    assert transcriber.entered.wait(timeout=2.0)

    session.reset()
    transcriber.gate.set()
    assert session.join(timeout=2.0)

    assert session.state == RecordingState.IDLE
    assert extractor.calls == []
    assert results == []
    assert session.transcript == ""


def test_recording_limit_stops_automatically() -> None:
    capture = FakeCapture()
    session = _session(capture=capture, max_recording_s=0.05)

    session.toggle()
    _wait_for_state(session, RecordingState.COMPLETED)

    assert session.state == RecordingState.COMPLETED
    assert capture.stops == 1


def test_recording_limit_timer_is_cancelled_by_manual_stop() -> None:
    capture = FakeCapture()
    session = _session(capture=capture, max_recording_s=0.2)

    session.toggle()
    session.toggle()
    session.reset()
    time.sleep(0.3)

    assert session.state == RecordingState.IDLE
    assert capture.starts == 1
    assert capture.stops == 1


def test_stale_recording_limit_does_not_start_new_recording() -> None:
    capture = FakeCapture()
    session = _session(capture=capture)

    session.toggle()
    stale_generation = session._generation
    session.reset()
    session._on_recording_limit(stale_generation)

    assert session.state == RecordingState.IDLE
    assert capture.starts == 1


def test_independent_fields_run_concurrently() -> None:
    name = _session(background=True)
    phone = _session(
        spec=field_specs.PHONE,
        extractor=FakeExtractor(reply={"mobileNumber": "9876543210"}),
        background=True,
    )

    name.toggle()
    phone.toggle()
    name.toggle()
    phone.toggle()
    assert name.join(timeout=2.0)
    assert phone.join(timeout=2.0)

    assert name.value == "Raj"
    assert phone.value == "9876543210"
