"""Multi-provider chat-completion client for patchloop.

Talks to OpenAI-compatible endpoints over httpx. Each request is routed
through the provider registry, every attempt is recorded back into the
rotation state, and failures are classified into explicit outcome variants
that drive the retry policy:

  SUCCESS       return the content
  RATE_LIMITED  re-route immediately; back off only if the new route is the
                same pair or is itself rate limited
  TRANSIENT     randomized backoff, then re-route
  FATAL         raise at once

When attempts run out, the last error is re-raised as-is. Raised errors
carry the updated rotation state in ``rotation_state``.
"""

from __future__ import annotations

import logging
import os
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import httpx

from patchloop.core.config import LLMConfig, ProviderConfig
from patchloop.core.exceptions import (
    HttpError,
    LLMError,
    ProviderConnectionError,
    RateLimitError,
    RequestTimeoutError,
)
from patchloop.llm import router
from patchloop.llm.keyring import OutcomeKind
from patchloop.llm.response_parser import extract_json
from patchloop.llm.router import Route, RotationState

logger = logging.getLogger("patchloop.llm.client")

_RATE_LIMIT_TEXT = re.compile(
    r"rate[\s_-]?limit|too many requests|quota|resource[_\s]exhausted",
    re.IGNORECASE,
)
_TRANSIENT_STATUSES = {408, 409, 425}


class LLMMessage:
    """A single message in a conversation."""

    def __init__(self, role: str, content: str):
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LLMMessage):
            return NotImplemented
        return self.role == other.role and self.content == other.content

    def __repr__(self) -> str:
        return f"LLMMessage(role={self.role!r}, content={self.content[:40]!r})"


@dataclass(frozen=True)
class ChatRequest:
    messages: tuple[LLMMessage, ...]
    model: str
    temperature: float = 0.0
    max_tokens: int = 2048
    json_mode: bool = False
    timeout_seconds: Optional[float] = None

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.json_mode:
            body["response_format"] = {"type": "json_object"}
        return body


@dataclass(frozen=True)
class CallResult:
    kind: OutcomeKind
    content: str = ""
    error: Optional[LLMError] = None


def classify_http_error(status_code: int, body: str, provider: Optional[str] = None) -> CallResult:
    """Map a non-2xx response onto an outcome variant and its error."""
    if status_code == 429 or (400 <= status_code < 500 and _RATE_LIMIT_TEXT.search(body or "")):
        return CallResult(OutcomeKind.RATE_LIMITED, error=RateLimitError(status_code, body, provider))
    if status_code in _TRANSIENT_STATUSES or status_code >= 500:
        return CallResult(OutcomeKind.TRANSIENT, error=HttpError(status_code, body, provider))
    return CallResult(OutcomeKind.FATAL, error=HttpError(status_code, body, provider))


def as_messages(messages: Any) -> tuple[LLMMessage, ...]:
    """Accept a prompt string, LLMMessage list, or role/content dicts."""
    if isinstance(messages, str):
        return (LLMMessage("user", messages),)
    result = []
    for m in messages or []:
        if isinstance(m, LLMMessage):
            result.append(m)
        else:
            result.append(LLMMessage(str(m["role"]), str(m["content"])))
    return tuple(result)


class ChatClient:
    """Executes chat requests against the configured providers.

    The client itself holds no rotation state: ``execute`` takes the current
    RotationState and returns the updated one alongside the response text.
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config = config or LLMConfig()
        self._client = http_client
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.environ = environ
        self._providers: dict[str, ProviderConfig] = {p.name: p for p in self.config.providers}

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(self.config.timeout_seconds))
        return self._client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def execute(self, state: RotationState, request: ChatRequest) -> tuple[RotationState, str]:
        """Run one chat request with routing, rotation and retries.

        Returns:
            (updated rotation state, response content)

        Raises:
            ConfigError: If no provider has credentials.
            LLMError: The last attempt's error when every attempt failed, or
                the first fatal error.
        """
        max_attempts = self.config.max_attempts
        last_error: Optional[LLMError] = None
        current: Optional[Route] = None

        for attempt in range(max_attempts):
            if current is None:
                state, current = router.route(state, self.clock())

            result = self._attempt(current, request)
            state = router.record(state, current, result.kind, self.clock())

            if result.kind is OutcomeKind.SUCCESS:
                return state, result.content

            last_error = result.error
            if result.kind is OutcomeKind.FATAL:
                logger.error("Fatal error from %s: %s", current, result.error)
                result.error.rotation_state = state
                raise result.error
            if attempt == max_attempts - 1:
                break

            if result.kind is OutcomeKind.RATE_LIMITED:
                state = router.expand_if_exhausted(state, current.provider)
                state, next_route = router.route(state, self.clock())
                saturated = state.get(next_route.provider).usage_of(next_route.credential).rate_limited
                if next_route == current or saturated:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "Rate limited on %s with no other key available. Waiting %.2fs (attempt %d/%d)",
                        current, delay, attempt + 1, max_attempts,
                    )
                    self.sleep(delay)
                else:
                    logger.warning("Rate limited on %s, rotating to %s", current, next_route)
                current = next_route
            else:
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "%s on %s. Waiting %.2fs (attempt %d/%d)",
                    type(result.error).__name__, current, delay, attempt + 1, max_attempts,
                )
                self.sleep(delay)
                current = None

        logger.error("Request failed after %d attempts: %s", max_attempts, last_error)
        last_error.rotation_state = state
        raise last_error

    def _attempt(self, used: Route, request: ChatRequest) -> CallResult:
        provider = self._providers.get(used.provider)
        if provider is None:
            return CallResult(OutcomeKind.FATAL, error=LLMError(f"Unknown provider '{used.provider}'"))

        url = f"{provider.base_url.rstrip('/')}/chat/completions"
        timeout = request.timeout_seconds or self.config.timeout_seconds
        logger.debug("POST %s model=%s via %s", provider.name, request.model, used)

        try:
            resp = self.client.post(
                url,
                json=request.payload(),
                headers=self._headers(provider, used.credential),
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            error = RequestTimeoutError(f"[{provider.name}] Request timed out after {timeout}s")
            error.__cause__ = e
            return CallResult(OutcomeKind.TRANSIENT, error=error)
        except httpx.TransportError as e:
            error = ProviderConnectionError(f"[{provider.name}] Connection error: {e}")
            error.__cause__ = e
            return CallResult(OutcomeKind.TRANSIENT, error=error)

        logger.debug("%s status %d", provider.name, resp.status_code)
        if not resp.is_success:
            return classify_http_error(resp.status_code, resp.text, provider.name)

        try:
            data = resp.json()
        except ValueError:
            return CallResult(
                OutcomeKind.TRANSIENT,
                error=LLMError(f"[{provider.name}] Response body is not JSON: {resp.text[:200]}"),
            )
        return CallResult(OutcomeKind.SUCCESS, content=_extract_content(data))

    def _headers(self, provider: ProviderConfig, credential: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
        }
        environ = self.environ if self.environ is not None else os.environ
        for header, var in provider.extra_headers_env.items():
            value = environ.get(var)
            if value:
                headers[header] = value
        return headers

    def _backoff_delay(self, attempt: int) -> float:
        return _backoff_delay(
            attempt,
            self.config.backoff_base_seconds,
            self.config.backoff_jitter_seconds,
            self.config.backoff_max_seconds,
            self.rng,
        )


def _extract_content(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""


def _backoff_delay(
    attempt: int,
    base_seconds: float = 0.6,
    jitter_seconds: float = 0.9,
    max_seconds: float = 30.0,
    rng: Optional[random.Random] = None,
) -> float:
    """Exponential backoff with uniform jitter: base * 2^attempt + U(0, jitter)."""
    rng = rng or random.Random()
    return min(base_seconds * (2 ** attempt), max_seconds) + rng.uniform(0, jitter_seconds)


@dataclass
class LLMGateway:
    """Run-scoped front door to the chat client.

    Owns the RotationState for the lifetime of the process and threads it
    through every call, so routing reacts to failures within the same call
    and across calls.
    """

    client: ChatClient
    state: RotationState
    default_temperature: float = 0.0
    default_max_tokens: int = 2048
    calls: int = field(default=0, init=False)

    def chat(
        self,
        messages: Any,
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        request = ChatRequest(
            messages=as_messages(messages),
            model=model,
            temperature=self.default_temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.default_max_tokens,
            json_mode=json_mode,
            timeout_seconds=timeout_seconds,
        )
        self.calls += 1
        try:
            self.state, content = self.client.execute(self.state, request)
        except LLMError as e:
            if e.rotation_state is not None:
                self.state = e.rotation_state
            raise
        return content

    def chat_json(self, messages: Any, model: str, **kwargs: Any) -> dict[str, Any]:
        """Chat in strict-JSON mode and decode the object from the reply."""
        return extract_json(self.chat(messages, model, json_mode=True, **kwargs))

    def close(self) -> None:
        self.client.close()
