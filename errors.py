"""Shared error codes, user-facing messages and exceptions."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
CAPTURE_FAILED = "CAPTURE_FAILED"
CONFIGURATION_FAILED = "CONFIGURATION_FAILED"
TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
EMPTY_TRANSCRIPT = "EMPTY_TRANSCRIPT"
EXTRACTION_FAILED = "EXTRACTION_FAILED"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone access is required, enable it in system settings.",
    CAPTURE_FAILED: "Microphone is busy or unavailable, please retry.",
    CONFIGURATION_FAILED: "Speech service is unavailable, please retry.",
    TRANSCRIPTION_FAILED: "Could not transcribe the recording, please retry.",
    EMPTY_TRANSCRIPT: "Nothing was understood, please speak again.",
    EXTRACTION_FAILED: "Could not read a value from what you said, please retry.",
}


class VoiceFieldError(Exception):
    """Base error carrying one of the codes above."""

    code = CAPTURE_FAILED

    def __init__(self, message: str = "", code: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.message = message or ERROR_MESSAGES.get(self.code, self.code)
        super().__init__(self.message)


class CaptureError(VoiceFieldError):
    code = CAPTURE_FAILED


class TranscriptionError(VoiceFieldError):
    code = TRANSCRIPTION_FAILED


class ExtractionError(VoiceFieldError):
    code = EXTRACTION_FAILED


class SessionCancelled(Exception):
    """Raised between stages once a session has been reset."""
