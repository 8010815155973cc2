from __future__ import annotations

from typing import List, Optional


class TransportError(RuntimeError):
    """The model could not be reached, timed out, or returned nothing usable."""


class ConfigurationError(TransportError):
    """Model credentials are missing or rejected; the whole run should go offline."""


class ValidationError(ValueError):
    """Model output failed shape validation, including after the single re-ask."""

    def __init__(self, message: str, raw_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class ConservativeLanguageViolation(ValueError):
    def __init__(self, text: str, violations: List[str]) -> None:
        super().__init__(f"conservative language violation: {', '.join(violations)}")
        self.text = text
        self.violations = violations
