"""
Completion-service access.

The analyzer and the expander only see ``CompletionClient.complete``: a list of
role-tagged messages in, a single text payload (expected to be JSON) out.
``GeminiCompletion`` is the production backend; ``DisabledCompletion`` stands
in when no API key is configured so callers fall back to static content.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

Message = dict[str, str]

_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}


class CompletionError(Exception):
    """The completion call failed in a way a retry will not fix."""


class TransientCompletionError(CompletionError):
    """Timeouts, transport failures, throttling and 5xx responses."""


class MalformedCompletion(CompletionError):
    """The service answered, but not with the JSON shape we asked for."""


class CompletionClient(ABC):
    @abstractmethod
    def complete(self, messages: list[Message], *, temperature: float) -> str:
        """Return the raw text of one completion. Raises CompletionError on failure."""
        raise NotImplementedError


class DisabledCompletion(CompletionClient):
    def complete(self, messages: list[Message], *, temperature: float) -> str:
        raise CompletionError("Completion service is not configured (GEMINI_API_KEY missing).")


class GeminiCompletion(CompletionClient):
    """Gemini via the official google-genai SDK, in JSON mode."""

    def __init__(self, api_key: str, model: str, *, timeout_s: float = 60.0) -> None:
        from google import genai
        from google.genai import types

        self._types = types
        self.model = model
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout_s * 1000)),
        )

    def _contents(self, messages: list[Message]) -> tuple[str | None, list[Any]]:
        types = self._types
        system_parts: list[str] = []
        contents: list[Any] = []
        for m in messages:
            role = m.get("role", "user")
            if role == "system":
                system_parts.append(m["content"])
                continue
            contents.append(
                types.Content(
                    role="model" if role == "assistant" else "user",
                    parts=[types.Part.from_text(text=m["content"])],
                )
            )
        return ("\n\n".join(system_parts) or None), contents

    def complete(self, messages: list[Message], *, temperature: float) -> str:
        from google.genai import errors

        system_instruction, contents = self._contents(messages)
        config = self._types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json",
            temperature=temperature,
        )
        try:
            resp = self._generate(contents, config)
        except errors.APIError as e:
            if getattr(e, "code", None) in _TRANSIENT_STATUS:
                raise TransientCompletionError(f"Gemini returned {e.code}: {e}") from e
            raise CompletionError(f"Gemini request failed: {e}") from e
        except httpx.TransportError as e:
            raise TransientCompletionError(f"Gemini transport error: {e}") from e
        except Exception as e:
            raise CompletionError(f"Gemini call failed: {e}") from e

        text = (getattr(resp, "text", None) or "").strip()
        if not text:
            raise MalformedCompletion("Empty response from Gemini")
        return text

    def _generate(self, contents: list[Any], config: Any) -> Any:
        return self._client.models.generate_content(model=self.model, contents=contents, config=config)


def parse_json_object(text: str) -> dict[str, Any]:
    # JSON mode may still wrap the document in a code fence.
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise MalformedCompletion(f"Response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedCompletion(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning("Transient completion failure (attempt %d): %s", state.attempt_number, exc)


def complete_json(
    client: CompletionClient,
    messages: list[Message],
    *,
    temperature: float,
    max_attempts: int = 3,
    wait: wait_base | None = None,
) -> dict[str, Any]:
    """Run a JSON-mode completion, retrying transient failures only.

    Permanent errors and malformed output raise immediately; transient errors
    raise once ``max_attempts`` is exhausted.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(TransientCompletionError),
        stop=stop_after_attempt(max_attempts),
        wait=wait if wait is not None else wait_exponential(multiplier=1, max=8),
        before_sleep=_log_retry,
        reraise=True,
    )
    text = retrying(client.complete, messages, temperature=temperature)
    return parse_json_object(text)
