"""Model gateway: every call to the generative model goes through here.

The gateway owns the credential list and the cursor into it. All concurrent
callers share that cursor, so a rotation made by one call is picked up by every
other call on its next attempt.

Failure policy per attempt:

* quota exhausted -> advance to the next key and restart the same call with a
  fresh backoff budget; no keys left is fatal
* overloaded (503) -> sleep and retry on the same key, doubling the delay, up to
  ``max_retries`` times
* anything else -> fatal, raised immediately
"""
import asyncio
import json
import logging
import re
import time
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol, Sequence, Tuple

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import TypeAdapter, ValidationError

from .config import CONFIG
from .errors import (
    CredentialsExhaustedError,
    GenerationError,
    InvalidCredentialError,
    MalformedResponseError,
    ModelOverloadedError,
    PlannerError,
)


QUOTA = "quota"
OVERLOAD = "overload"
MALFORMED = "malformed"
INVALID_KEY = "invalid_key"
FATAL = "fatal"

_BULLET = re.compile(r"^[\*\-]\s*")


class ModelBackend(Protocol):
    """Transport to the model service. Takes a credential per call."""

    async def generate_json(self, api_key: str, prompt: str, schema: Dict[str, Any]) -> str:
        ...

    def stream_text(self, api_key: str, prompt: str) -> AsyncIterator[str]:
        ...


def _chunk_text(chunk: Any) -> str:
    # .text raises ValueError on chunks without parts (e.g. the final one)
    try:
        return getattr(chunk, "text", "") or ""
    except ValueError:
        return ""


class GeminiBackend:
    def __init__(self, model_name: str = CONFIG.model_name) -> None:
        self.model_name = model_name
        self._configured_key: Optional[str] = None

    def _model(self, api_key: str, generation_config: Optional[Dict[str, Any]] = None) -> genai.GenerativeModel:
        if api_key != self._configured_key:
            genai.configure(api_key=api_key)
            self._configured_key = api_key
        return genai.GenerativeModel(self.model_name, generation_config=generation_config)

    async def generate_json(self, api_key: str, prompt: str, schema: Dict[str, Any]) -> str:
        model = self._model(
            api_key,
            {
                "response_mime_type": "application/json",
                "response_schema": schema,
            },
        )
        response = await model.generate_content_async(prompt)
        return _chunk_text(response).strip()

    async def stream_text(self, api_key: str, prompt: str) -> AsyncIterator[str]:
        model = self._model(api_key)
        response_stream = await model.generate_content_async(prompt, stream=True)
        async for chunk in response_stream:
            text = _chunk_text(chunk)
            if text:
                yield text


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, (json.JSONDecodeError, ValidationError)):
        return MALFORMED
    message = str(exc)
    if isinstance(exc, google_exceptions.ResourceExhausted) or "quota" in message.lower():
        return QUOTA
    if isinstance(exc, google_exceptions.ServiceUnavailable) or "503" in message:
        return OVERLOAD
    if isinstance(exc, (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)):
        return INVALID_KEY
    if "API key not valid" in message:
        return INVALID_KEY
    return FATAL


def _fatal(kind: str, exc: BaseException) -> PlannerError:
    if isinstance(exc, PlannerError):
        return exc
    if kind == MALFORMED:
        return MalformedResponseError()
    if kind == INVALID_KEY:
        return InvalidCredentialError()
    return GenerationError(f"Failed to generate content: {exc}")


def clean_line(line: str) -> str:
    return _BULLET.sub("", line.strip(), count=1)


class _Backoff:
    def __init__(self, max_retries: int, initial_ms: float) -> None:
        self.max_retries = max_retries
        self.initial_ms = initial_ms
        self.reset()

    def reset(self) -> None:
        self.attempt = 0
        self.delay_ms = self.initial_ms

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    def next_delay_ms(self) -> float:
        self.attempt += 1
        delay = self.delay_ms
        self.delay_ms *= 2
        return delay


class ModelGateway:
    def __init__(
        self,
        api_keys: Sequence[str],
        backend: Optional[ModelBackend] = None,
        max_retries: int = CONFIG.max_retries,
        initial_backoff_ms: float = CONFIG.backoff_initial_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._keys = list(api_keys)
        self._key_index = 0
        self._backend = backend or GeminiBackend()
        self.max_retries = max_retries
        self.initial_backoff_ms = initial_backoff_ms
        self._sleep = sleep
        if not self._keys:
            logging.error("No API keys configured. Set GEMINI_API_KEYS to a comma-separated list.")

    @property
    def key_index(self) -> int:
        return self._key_index

    def _checkout(self) -> Tuple[int, str]:
        if not self._keys:
            raise CredentialsExhaustedError()
        return self._key_index, self._keys[self._key_index]

    def _rotate(self, failed_index: int) -> bool:
        if failed_index != self._key_index:
            # Another call already moved past the exhausted key.
            return True
        if self._key_index + 1 >= len(self._keys):
            logging.error("All available API keys have exceeded their quota.")
            return False
        self._key_index += 1
        logging.warning(f"Quota limit reached. Switching to API key #{self._key_index + 1}...")
        return True

    def _log_call(self, fn: str, started: float, ok: bool, key_index: int, attempt: int) -> None:
        log_data = {
            "ts": datetime.utcnow().isoformat(),
            "service": "gemini",
            "fn": fn,
            "latency_ms": f"{(time.monotonic() - started) * 1000:.2f}",
            "ok": ok,
            "key_index": key_index,
            "attempt": attempt,
        }
        logging.info(json.dumps(log_data))

    async def _recover(self, exc: Exception, key_index: int, backoff: _Backoff) -> None:
        """Return to retry the call, or raise the error the caller should see."""
        kind = classify_error(exc)
        if kind == QUOTA:
            if not self._rotate(key_index):
                raise CredentialsExhaustedError() from exc
            backoff.reset()
            return
        if kind == OVERLOAD:
            if backoff.exhausted:
                logging.error(f"Model still overloaded after {backoff.max_retries} retries.")
                raise ModelOverloadedError() from exc
            delay_ms = backoff.next_delay_ms()
            logging.warning(
                f"Model overloaded (503). Retrying attempt {backoff.attempt}/{backoff.max_retries} in {delay_ms:.0f}ms..."
            )
            await self._sleep(delay_ms / 1000)
            return
        logging.error(f"AI call failed: {exc}")
        raise _fatal(kind, exc) from exc

    async def call_structured(self, prompt: str, schema: Dict[str, Any], response_type: Any) -> Any:
        """Generate JSON matching ``schema`` and validate it into ``response_type``."""
        adapter = TypeAdapter(response_type)
        backoff = _Backoff(self.max_retries, self.initial_backoff_ms)
        while True:
            key_index, key = self._checkout()
            started = time.monotonic()
            try:
                text = await self._backend.generate_json(key, prompt, schema)
                result = adapter.validate_json(text)
            except Exception as e:
                self._log_call("structured", started, False, key_index, backoff.attempt)
                await self._recover(e, key_index, backoff)
                continue
            self._log_call("structured", started, True, key_index, backoff.attempt)
            return result

    async def call_stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield the response one line at a time, bullet markers stripped.

        The stream is not resumable: once a line has been yielded, a failure is
        raised to the caller instead of being retried.
        """
        backoff = _Backoff(self.max_retries, self.initial_backoff_ms)
        while True:
            key_index, key = self._checkout()
            started = time.monotonic()
            yielded = False
            try:
                buffer = ""
                async for chunk in self._backend.stream_text(key, prompt):
                    buffer += chunk
                    while "\n" in buffer:
                        line, buffer = buffer.split("\n", 1)
                        item = clean_line(line)
                        if item:
                            yielded = True
                            yield item
                item = clean_line(buffer)
                if item:
                    yield item
            except Exception as e:
                self._log_call("stream", started, False, key_index, backoff.attempt)
                if yielded:
                    logging.error(f"AI stream call failed mid-stream: {e}")
                    raise GenerationError("An error occurred during AI stream generation.") from e
                await self._recover(e, key_index, backoff)
                continue
            self._log_call("stream", started, True, key_index, backoff.attempt)
            return
