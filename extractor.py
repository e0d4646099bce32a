"""LLM field extractor using a DashScope chat completion.

The model is asked for ``{"fields": {...}}`` holding the field's keys. Replies
using the older flat shape (``{"fullName": ...}``) are accepted too.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Mapping, Optional

from errors import ExtractionError, SessionCancelled
from models import CancelToken, ExtractionResult, FieldSpec

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a precise form data extraction AI. Always respond with valid JSON only."


def build_prompt(transcript: str, spec: FieldSpec) -> str:
    lines = [spec.prompt_template.format(transcript=transcript), ""]
    if spec.instructions:
        lines.append("Instructions:")
        lines.extend(f"- {item}" for item in spec.instructions)
        lines.append("")
    shape = ", ".join(f'"{key}": "extracted value or null"' for key in spec.keys)
    lines.append("Respond ONLY with JSON in exactly this structure:")
    lines.append('{"fields": {' + shape + "}}")
    return "\n".join(lines)


def _strip_fences(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text[3:]
        if text[:4].lower() == "json":
            text = text[4:]
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_extraction(content: str, spec: FieldSpec, transcript: str = "") -> ExtractionResult:
    """Parse a model reply into the field's values; missing keys become None."""
    try:
        payload = json.loads(_strip_fences(content))
    except (TypeError, ValueError) as exc:
        raise ExtractionError(f"model reply is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ExtractionError("model reply is not a JSON object")

    fields = payload.get("fields")
    source: Mapping[str, Any] = fields if isinstance(fields, dict) else payload
    values = {key: _clean(source.get(key)) for key in spec.keys}
    return ExtractionResult(values=values, raw=transcript, primary_key=spec.primary_key)


class DashscopeFieldExtractor:
    def __init__(
        self,
        api_key: str,
        model: str = "qwen-plus",
        request_timeout_s: float = 15.0,
        temperature: float = 0.1,
        max_tokens: int = 300,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s
        self._temperature = temperature
        self._max_tokens = max_tokens

    def extract(
        self,
        transcript: str,
        spec: FieldSpec,
        cancel: Optional[CancelToken] = None,
    ) -> ExtractionResult:
        if dashscope is None:
            raise ExtractionError("dashscope is not installed")
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise ExtractionError("No API key configured")
        if cancel is not None and cancel.cancelled:
            raise SessionCancelled()

        try:
            response = dashscope.Generation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(transcript, spec)},
                ],
                result_format="message",
                response_format={"type": "json_object"},
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                request_timeout=self._request_timeout_s,
            )
        except Exception as exc:
            raise ExtractionError(f"completion request failed: {exc}") from exc

        content = self._extract_content(response)
        logger.debug("extraction reply for %s: %d chars", spec.kind.value, len(content))
        return parse_extraction(content, spec, transcript)

    def _extract_content(self, response: object) -> str:
        """Pull the message text out of a DashScope response dict."""
        if not isinstance(response, dict):
            raise ExtractionError("unexpected completion response")
        status = response.get("status_code")
        if status is not None:
            try:
                status = int(status)
            except (TypeError, ValueError) as exc:
                raise ExtractionError(f"unexpected status code: {status!r}") from exc
            if not 200 <= status < 300:
                message = response.get("message") or response.get("code") or ""
                raise ExtractionError(f"HTTP {status}: {message}".rstrip(": "))
        output = response.get("output") or {}
        if not isinstance(output, dict):
            raise ExtractionError("completion response has no output")
        choices = output.get("choices") or []
        if not choices:
            # text result_format fallback
            text = output.get("text")
            if isinstance(text, str):
                return text
            raise ExtractionError("completion response has no choices")
        choice = choices[0] if isinstance(choices, list) else None
        message = choice.get("message") if isinstance(choice, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ExtractionError("completion response has no content")
        return content
