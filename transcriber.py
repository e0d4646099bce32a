"""Speech pipeline client: pipeline discovery, then ASR inference.

Both calls are plain JSON POSTs. Discovery resolves which service/model the
inference endpoint should use for a language; inference takes base64 WAV
audio and returns the transcript under ``pipelineResponse[0].output[0]``.
Every failure is mapped to a ``TranscriptionError`` with the stage's code.
"""

from __future__ import annotations

import base64
import io
import logging
import wave
from typing import Any, Optional

import httpx

from config import DEFAULT_CONFIG_ENDPOINT, DEFAULT_INFERENCE_ENDPOINT, DEFAULT_PIPELINE_ID
from errors import CONFIGURATION_FAILED, TRANSCRIPTION_FAILED, SessionCancelled, TranscriptionError
from models import AudioBuffer, CancelToken, PipelineConfig

logger = logging.getLogger(__name__)


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    wav_bytes = buf.getvalue()
    return base64.b64encode(wav_bytes).decode("ascii")


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


class PipelineTranscriptionClient:
    def __init__(
        self,
        api_key: str,
        pipeline_id: str = DEFAULT_PIPELINE_ID,
        config_endpoint: str = DEFAULT_CONFIG_ENDPOINT,
        inference_endpoint: str = DEFAULT_INFERENCE_ENDPOINT,
        request_timeout_s: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key
        self._pipeline_id = pipeline_id
        self._config_endpoint = config_endpoint
        self._inference_endpoint = inference_endpoint
        self._request_timeout_s = request_timeout_s
        self._client = client or httpx.Client(timeout=httpx.Timeout(request_timeout_s))

    def close(self) -> None:
        self._client.close()

    def resolve_pipeline(
        self,
        source_language: str,
        target_language: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> PipelineConfig:
        language = {"sourceLanguage": source_language}
        if target_language:
            language["targetLanguage"] = target_language
        body = {
            "pipelineTasks": [{"taskType": "asr", "config": {"language": language}}],
            "pipelineRequestConfig": {"pipelineId": self._pipeline_id},
        }
        payload = self._post(self._config_endpoint, body, CONFIGURATION_FAILED, cancel)

        response_config = _first(payload.get("pipelineResponseConfig"))
        config_item = _first(response_config.get("config")) if isinstance(response_config, dict) else None
        if not isinstance(config_item, dict):
            raise TranscriptionError("pipeline response has no config", code=CONFIGURATION_FAILED)
        service_id = config_item.get("serviceId")
        model_id = config_item.get("modelId")
        if not isinstance(service_id, str) or not service_id or not isinstance(model_id, str) or not model_id:
            raise TranscriptionError("pipeline response lacks serviceId/modelId", code=CONFIGURATION_FAILED)
        logger.debug("resolved pipeline service=%s model=%s", service_id, model_id)
        return PipelineConfig(
            service_id=service_id,
            model_id=model_id,
            source_language=source_language,
            target_language=target_language,
        )

    def transcribe(
        self,
        audio: AudioBuffer,
        config: PipelineConfig,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        body = {
            "pipelineTasks": [
                {
                    "taskType": "asr",
                    "config": {
                        "modelId": config.model_id,
                        "serviceId": config.service_id,
                        "language": {"sourceLanguage": config.source_language},
                    },
                }
            ],
            "inputData": {
                "audio": [
                    {
                        "audioContent": _pcm_to_wav_base64(
                            audio.pcm16_bytes,
                            audio.sample_rate,
                            audio.channels,
                            audio.sample_width,
                        )
                    }
                ]
            },
        }
        payload = self._post(self._inference_endpoint, body, TRANSCRIPTION_FAILED, cancel)

        response = _first(payload.get("pipelineResponse"))
        output = _first(response.get("output")) if isinstance(response, dict) else None
        source = output.get("source") if isinstance(output, dict) else None
        if not isinstance(source, str):
            raise TranscriptionError("inference response has no output", code=TRANSCRIPTION_FAILED)
        return source.strip()

    def _post(
        self,
        url: str,
        body: dict,
        code: str,
        cancel: Optional[CancelToken],
    ) -> dict:
        if cancel is not None and cancel.cancelled:
            raise SessionCancelled()
        headers = {"Authorization": self._api_key, "Content-Type": "application/json"}
        try:
            response = self._client.post(
                url,
                json=body,
                headers=headers,
                timeout=self._request_timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise TranscriptionError(f"request timed out after {self._request_timeout_s}s", code=code) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"network error: {exc}", code=code) from exc
        except httpx.InvalidURL as exc:
            raise TranscriptionError(f"invalid endpoint {url!r}: {exc}", code=code) from exc

        if not response.is_success:
            logger.warning("speech endpoint %s returned HTTP %d", url, response.status_code)
            raise TranscriptionError(f"HTTP {response.status_code}", code=code)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TranscriptionError("response is not valid JSON", code=code) from exc
        if not isinstance(payload, dict):
            raise TranscriptionError("response is not a JSON object", code=code)
        return payload
