"""State-machine based voice capture for a single form field."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from errors import (
    CAPTURE_FAILED,
    CONFIGURATION_FAILED,
    EMPTY_TRANSCRIPT,
    ERROR_MESSAGES,
    EXTRACTION_FAILED,
    PERMISSION_DENIED,
    TRANSCRIPTION_FAILED,
    SessionCancelled,
    VoiceFieldError,
)
from interfaces import AudioCapture, FeedbackSink, FieldExtractor, TranscriptionClient
from models import AudioBuffer, CancelToken, ExtractionResult, FieldSpec, RecordingState

logger = logging.getLogger(__name__)

StateCallback = Callable[[RecordingState, RecordingState], None]
ResultCallback = Callable[[ExtractionResult], None]
ErrorCallback = Callable[[str, str], None]

_ALLOWED = {
    RecordingState.IDLE: {RecordingState.RECORDING, RecordingState.ERROR},
    RecordingState.RECORDING: {RecordingState.PROCESSING, RecordingState.ERROR, RecordingState.IDLE},
    RecordingState.PROCESSING: {RecordingState.COMPLETED, RecordingState.ERROR, RecordingState.IDLE},
    RecordingState.COMPLETED: {RecordingState.IDLE},
    RecordingState.ERROR: {RecordingState.IDLE},
}


class VoiceFieldSession:
    """Capture -> transcribe -> extract for one ``FieldSpec``.

    ``toggle()`` starts recording from IDLE and stops it from RECORDING, which
    kicks off the pipeline (on a worker thread unless ``background`` is
    False). Any other state ignores the toggle, so a field never has two
    pipelines in flight. COMPLETED and ERROR stay put until ``reset()``.
    """

    def __init__(
        self,
        spec: FieldSpec,
        capture: AudioCapture,
        transcriber: TranscriptionClient,
        extractor: FieldExtractor,
        source_language: str = "hi",
        target_language: Optional[str] = None,
        feedback: Optional[FeedbackSink] = None,
        max_recording_s: Optional[float] = None,
        background: bool = True,
        on_state_change: Optional[StateCallback] = None,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._spec = spec
        self._capture = capture
        self._transcriber = transcriber
        self._extractor = extractor
        self._source_language = source_language
        self._target_language = target_language
        self._feedback = feedback
        self._max_recording_s = max_recording_s
        self._background = background
        self._on_state_change = on_state_change
        self._on_result = on_result
        self._on_error = on_error

        self._lock = threading.RLock()
        self._state = RecordingState.IDLE
        self._generation = 0
        self._cancel: Optional[CancelToken] = None
        self._worker: Optional[threading.Thread] = None
        self._limit_timer: Optional[threading.Timer] = None

        self._result: Optional[ExtractionResult] = None
        self._transcript = ""
        self._error_code = ""
        self._error_message = ""

    @property
    def spec(self) -> FieldSpec:
        return self._spec

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def result(self) -> Optional[ExtractionResult]:
        return self._result

    @property
    def value(self) -> Optional[str]:
        return self._result.value if self._result else None

    @property
    def values(self) -> dict[str, Optional[str]]:
        return dict(self._result.values) if self._result else {}

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def error_code(self) -> str:
        return self._error_code

    @property
    def error_message(self) -> str:
        return self._error_message

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def toggle(self) -> None:
        self._toggle()

    def _toggle(self, expected_generation: Optional[int] = None) -> None:
        run: Optional[tuple[int, CancelToken, AudioBuffer]] = None
        with self._lock:
            if expected_generation is not None and (
                expected_generation != self._generation or self._state != RecordingState.RECORDING
            ):
                return
            if self._state == RecordingState.IDLE:
                self._begin_recording()
                return
            if self._state != RecordingState.RECORDING:
                logger.info("%s: toggle ignored while %s", self._spec.kind.value, self._state.value)
                return
            run = self._end_recording()

        if run is None:
            return
        if self._background:
            worker = threading.Thread(target=self._run_pipeline, args=run, daemon=True)
            with self._lock:
                self._worker = worker
            worker.start()
        else:
            self._run_pipeline(*run)

    def reset(self) -> None:
        with self._lock:
            self._cancel_limit_timer()
            if self._cancel is not None:
                self._cancel.cancel()
                self._cancel = None
            self._generation += 1
            if self._capture.is_active:
                self._safe_stop_capture()
            self._result = None
            self._transcript = ""
            self._error_code = ""
            self._error_message = ""
            self._transition(RecordingState.IDLE)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the running pipeline, if any. True once nothing is running."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _begin_recording(self) -> None:
        if not self._request_permission():
            self._fail(PERMISSION_DENIED, ERROR_MESSAGES[PERMISSION_DENIED])
            return
        try:
            self._capture.start()
        except VoiceFieldError as exc:
            self._fail(exc.code, exc.message)
            return
        except Exception as exc:
            logger.exception("%s: capture start failed", self._spec.kind.value)
            self._fail(CAPTURE_FAILED, str(exc))
            return
        self._transition(RecordingState.RECORDING)
        self._start_limit_timer()

    def _end_recording(self) -> Optional[tuple[int, CancelToken, AudioBuffer]]:
        self._cancel_limit_timer()
        try:
            buffer = self._capture.stop()
        except VoiceFieldError as exc:
            self._fail(exc.code, exc.message)
            return None
        except Exception as exc:
            logger.exception("%s: capture stop failed", self._spec.kind.value)
            self._fail(CAPTURE_FAILED, str(exc))
            return None
        self._transition(RecordingState.PROCESSING)
        self._generation += 1
        self._cancel = CancelToken()
        return self._generation, self._cancel, buffer

    def _request_permission(self) -> bool:
        try:
            return bool(self._capture.request_permission())
        except Exception:
            logger.exception("%s: permission request failed", self._spec.kind.value)
            return False

    def _start_limit_timer(self) -> None:
        if not self._max_recording_s:
            return
        timer = threading.Timer(self._max_recording_s, self._on_recording_limit, args=(self._generation,))
        timer.daemon = True
        self._limit_timer = timer
        timer.start()

    def _cancel_limit_timer(self) -> None:
        if self._limit_timer is not None:
            self._limit_timer.cancel()
            self._limit_timer = None

    def _on_recording_limit(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state != RecordingState.RECORDING:
                return
            logger.info("%s: recording limit of %.0fs reached", self._spec.kind.value, self._max_recording_s)
            self._limit_timer = None
        # a reset in between bumps the generation, so this stays a no-op then
        self._toggle(expected_generation=generation)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run_pipeline(self, generation: int, cancel: CancelToken, audio: AudioBuffer) -> None:
        try:
            if not audio.byte_length:
                raise VoiceFieldError("no audio was recorded", code=EMPTY_TRANSCRIPT)

            self._check(cancel)
            config = self._stage(
                CONFIGURATION_FAILED,
                self._transcriber.resolve_pipeline,
                self._source_language,
                self._target_language,
                cancel,
            )

            self._check(cancel)
            transcript = self._stage(TRANSCRIPTION_FAILED, self._transcriber.transcribe, audio, config, cancel)
            with self._lock:
                if generation == self._generation:
                    self._transcript = transcript
            if not transcript:
                raise VoiceFieldError(ERROR_MESSAGES[EMPTY_TRANSCRIPT], code=EMPTY_TRANSCRIPT)

            self._check(cancel)
            result = self._stage(EXTRACTION_FAILED, self._extractor.extract, transcript, self._spec, cancel)
            if not result.is_complete(self._spec):
                missing = [key for key in self._spec.required_keys if not result.values.get(key)]
                raise VoiceFieldError(f"no value found for {', '.join(missing)}", code=EXTRACTION_FAILED)
        except SessionCancelled:
            logger.debug("%s: pipeline run %d cancelled", self._spec.kind.value, generation)
            return
        except VoiceFieldError as exc:
            self._settle_error(generation, exc.code, exc.message)
            return

        self._settle_success(generation, result)

    def _stage(self, code: str, func: Callable, *args):  # noqa: ANN202
        try:
            return func(*args)
        except (VoiceFieldError, SessionCancelled):
            raise
        except Exception as exc:
            logger.exception("%s: unexpected failure (%s)", self._spec.kind.value, code)
            raise VoiceFieldError(str(exc) or exc.__class__.__name__, code=code) from exc

    @staticmethod
    def _check(cancel: CancelToken) -> None:
        if cancel.cancelled:
            raise SessionCancelled()

    def _settle_success(self, generation: int, result: ExtractionResult) -> None:
        with self._lock:
            if generation != self._generation or self._state != RecordingState.PROCESSING:
                logger.debug("%s: dropping stale result", self._spec.kind.value)
                return
            self._cancel = None
            self._result = result
            self._transition(RecordingState.COMPLETED)
            self._emit(self._on_result, result)
            if self._feedback is not None:
                self._emit(self._feedback.notify_success)

    def _settle_error(self, generation: int, code: str, message: str) -> None:
        with self._lock:
            if generation != self._generation or self._state != RecordingState.PROCESSING:
                logger.debug("%s: dropping stale error %s", self._spec.kind.value, code)
                return
            self._cancel = None
            self._fail(code, message)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fail(self, code: str, message: str) -> None:
        logger.warning("%s: %s: %s", self._spec.kind.value, code, message)
        if self._capture.is_active:
            self._safe_stop_capture()
        self._error_code = code
        self._error_message = message
        self._transition(RecordingState.ERROR)
        self._emit(self._on_error, code, message)
        if self._feedback is not None:
            self._emit(self._feedback.notify_error)

    def _safe_stop_capture(self) -> None:
        try:
            self._capture.stop()
        except Exception:
            logger.exception("%s: failed to stop capture", self._spec.kind.value)

    def _emit(self, callback: Optional[Callable], *args) -> None:  # noqa: ANN002
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("%s: observer callback failed", self._spec.kind.value)

    def _transition(self, to_state: RecordingState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        if to_state not in _ALLOWED[from_state]:
            logger.error("%s: refusing transition %s -> %s", self._spec.kind.value, from_state.value, to_state.value)
            return
        self._state = to_state
        logger.debug("%s: %s -> %s", self._spec.kind.value, from_state.value, to_state.value)
        self._emit(self._on_state_change, from_state, to_state)
