from __future__ import annotations

import json
import logging
import re
import time
from contextlib import suppress
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import ConfigurationError, ValidationError
from .openai_client import call_model, is_model_configured
from .utils import ensure_dir, slugify

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]
Validator = Callable[[Payload], bool]
ReaskPrompt = Callable[[str], str]
Transport = Callable[..., str]

REASK_SUFFIX = """

Your previous reply could not be used because it was not valid JSON matching the required schema.
Important formatting rules:
- Respond with ONLY a single minified JSON object.
- Begin with '{' and end with '}'.
- No markdown, no prose, no code fences, no reasoning.
- Follow the schema exactly; include every required key.
"""


def default_reask_prompt(original_prompt: str) -> str:
    return original_prompt.rstrip() + REASK_SUFFIX


def _strip_code_fence(text: str) -> str:
    if "```" not in text:
        return text
    match = re.search(r"```[a-zA-Z]*\s*(.*?)\s*```", text, re.DOTALL)
    return match.group(1).strip() if match else text


def parse_json_object(raw_text: str) -> Optional[Payload]:
    """Find the first JSON object in a model reply, tolerating fences and preamble."""
    cleaned = str(raw_text or "").strip()
    if not cleaned:
        return None
    decoder = json.JSONDecoder()

    candidates: List[str] = []
    fenced = _strip_code_fence(cleaned)
    if fenced:
        candidates.append(fenced)
    if cleaned != fenced:
        candidates.append(cleaned)
    # Walk through each opening brace to allow trailing/preamble text
    for text in list(candidates):
        idx = text.find("{")
        while idx != -1:
            candidates.append(text[idx:])
            idx = text.find("{", idx + 1)

    for candidate in candidates:
        with suppress(json.JSONDecodeError):
            obj = json.loads(candidate)
            if isinstance(obj, dict):
                return obj
        with suppress(json.JSONDecodeError):
            obj, _ = decoder.raw_decode(candidate)
            if isinstance(obj, dict):
                return obj
    return None


class ModelInvoker:
    """One model call under a strict JSON contract.

    Transport failures and timeouts propagate unchanged as ``TransportError``.
    A reply that does not parse or fails ``validate`` is re-asked exactly once
    with a stricter prompt; a second failure raises ``ValidationError``.
    Holds no per-call state, so it can be shared across threads. The one
    exception is the offline switch: once credentials are rejected the
    invoker reports itself unavailable for the rest of the run.
    """

    def __init__(
        self,
        model: str,
        *,
        transport: Transport = call_model,
        is_configured: Callable[[], bool] = is_model_configured,
        raw_response_dir: Optional[Path] = None,
    ) -> None:
        self.model = model
        self.transport = transport
        self._is_configured = is_configured
        self.raw_response_dir = raw_response_dir
        self.offline = False

    @property
    def available(self) -> bool:
        return not self.offline and self._is_configured()

    def go_offline(self, reason: object) -> None:
        if not self.offline:
            logger.warning("[invoke] model disabled for the rest of the run: %s", reason)
        self.offline = True

    def invoke(
        self,
        prompt: str,
        *,
        validate: Validator,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
        temperature: float = 0.3,
        timeout: float = 60.0,
        reask_prompt: Optional[ReaskPrompt] = None,
        context: str = "model-call",
    ) -> Payload:
        prompts = [prompt, (reask_prompt or default_reask_prompt)(prompt)]
        raw = ""
        for attempt_idx, attempt_prompt in enumerate(prompts):
            try:
                raw = self.transport(
                    model=self.model,
                    user_prompt=attempt_prompt,
                    system_prompt=system_prompt,
                    max_output_tokens=max_tokens,
                    temperature=temperature,
                    timeout=timeout,
                    call_context=f"{context}-a{attempt_idx + 1}",
                )
            except ConfigurationError as exc:
                self.go_offline(exc)
                raise
            payload = parse_json_object(raw)
            if payload is not None and self._passes(validate, payload):
                return payload
            if attempt_idx + 1 < len(prompts):
                logger.warning("[invoke] %s: reply failed shape validation; re-asking once", context)
        dump_path = self._dump_unparsed_response(raw, context)
        raise ValidationError(
            f"{context}: reply failed shape validation after re-ask"
            + (f" (saved raw to {dump_path})" if dump_path else ""),
            raw_text=raw,
        )

    @staticmethod
    def _passes(validate: Validator, payload: Payload) -> bool:
        try:
            return bool(validate(payload))
        except (KeyError, TypeError, ValueError):
            return False

    def _dump_unparsed_response(self, text: str, context: str) -> Optional[Path]:
        if not self.raw_response_dir:
            return None
        safe_ctx = slugify(context) or "context"
        dump_path = self.raw_response_dir / f"{safe_ctx}-{time.time_ns()}.txt"
        try:
            ensure_dir(dump_path.parent)
            dump_path.write_text(text or "", encoding="utf-8")
        except OSError as exc:
            logger.warning("[invoke] could not save raw reply for %s: %s", context, exc)
            return None
        return dump_path
