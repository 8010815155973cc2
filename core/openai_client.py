from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import openai
from dotenv import load_dotenv
from openai import OpenAI

from .errors import ConfigurationError, TransportError
from .rate_limit import rate_limiter_registry
from .tokens import estimate_total_tokens

load_dotenv()

logger = logging.getLogger(__name__)

_client: Optional[OpenAI] = None

# Order matters: APITimeoutError subclasses APIConnectionError, which subclasses APIError.
OPENAI_CREDENTIAL_ERRORS = (openai.AuthenticationError, openai.PermissionDeniedError)
OPENAI_HARD_ERRORS = (openai.BadRequestError, openai.NotFoundError)
OPENAI_TRANSIENT_ERRORS = (openai.RateLimitError, openai.APIConnectionError, openai.APIError)


def configure_model_limits(model_limits: Dict[str, int]) -> None:
    for model_name, tpm in model_limits.items():
        rate_limiter_registry.register(model_name, tpm)


def is_model_configured() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


def get_client() -> OpenAI:
    """Lazily initialize the OpenAI client so imports don't fail without env configured."""
    global _client
    if _client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set in the environment.")
        _client = OpenAI(api_key=api_key, max_retries=0)
    return _client


def _response_text(resp: Any) -> Optional[str]:
    text = getattr(resp, "output_text", None)
    if text:
        return str(text)
    for item in getattr(resp, "output", None) or []:
        for block in getattr(item, "content", []) or []:
            maybe_text = getattr(block, "text", None)
            if maybe_text:
                return str(maybe_text)
    return None


def call_model(
    *,
    model: str,
    user_prompt: str,
    system_prompt: Optional[str] = None,
    max_output_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    timeout: Optional[float] = None,
    reasoning: Optional[str] = None,
    call_context: str = "",
    max_retries: int = 5,
    client: Optional[OpenAI] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Send one prompt to the Responses API and return its text.

    Transient provider errors are retried with exponential backoff, but never
    past ``timeout`` seconds from the start of the call. A timeout surfaces as
    ``TransportError`` straight away; rejected credentials as ``ConfigurationError``.
    """
    if client is None:
        if not is_model_configured():
            raise ConfigurationError("OPENAI_API_KEY is not set in the environment.")
        client = get_client()
    deadline = clock() + timeout if timeout else None

    limiter = rate_limiter_registry.get(model)
    if limiter:
        limiter.wait_for(estimate_total_tokens(system_prompt, user_prompt, max_output_tokens, model))

    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})
    request_args: Dict[str, Any] = {"model": model, "input": messages}
    if max_output_tokens:
        request_args["max_output_tokens"] = max_output_tokens
    if temperature is not None:
        request_args["temperature"] = temperature
    if reasoning:
        request_args["reasoning"] = {"effort": reasoning}

    last_exc: Optional[Exception] = None
    for attempt in range(max_retries):
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise TransportError(f"{call_context}: timed out after {timeout}s") from last_exc
            request_args["timeout"] = remaining
        try:
            resp = client.responses.create(**request_args)
        except OPENAI_CREDENTIAL_ERRORS as exc:
            raise ConfigurationError(f"{call_context}: credentials rejected: {exc}") from exc
        except OPENAI_HARD_ERRORS as exc:
            raise TransportError(f"{call_context}: non-retryable OpenAI error: {exc}") from exc
        except openai.APITimeoutError as exc:
            raise TransportError(f"{call_context}: timed out after {timeout}s") from exc
        except OPENAI_TRANSIENT_ERRORS as exc:
            last_exc = exc
            backoff = min(2 ** attempt, 60)
            if deadline is not None and clock() + backoff >= deadline:
                raise TransportError(f"{call_context}: no time left to retry ({exc!r})") from exc
            logger.warning("%s: transient error (%r); retrying in %.1fs", call_context, exc, backoff)
            sleep(backoff)
            continue
        text = _response_text(resp)
        if not text:
            raise TransportError(f"{call_context}: no text block in response")
        usage = getattr(resp, "usage", None)
        if usage is not None:
            logger.debug(
                "[tokens] %s: in=%s out=%s",
                call_context,
                getattr(usage, "input_tokens", None),
                getattr(usage, "output_tokens", None),
            )
        return text
    raise TransportError(f"{call_context}: failed after {max_retries} attempts ({last_exc!r})")
