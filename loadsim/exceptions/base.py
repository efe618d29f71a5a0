"""Exception hierarchy for computer-loadsim.

Every error carries a machine-readable ``code``, a human message and an
optional ``details`` mapping so CLI output and logs can show the offending
value next to the failure.
"""

from __future__ import annotations

from typing import Any


class LoadSimError(Exception):
    """Base exception for all simulator errors."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.code = code
        self.message = message
        self.details = dict(details) if details else {}
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}: {self.message}"
        rendered = ", ".join(f"{key}={value!r}" for key, value in self.details.items())
        return f"{self.code}: {self.message} ({rendered})"


class ValidationError(LoadSimError):
    """Raised when a value fails validation (durations, stages, options)."""

    pass


class ConfigurationError(LoadSimError):
    """Raised when a scenario definition is inconsistent or incomplete."""

    pass


class ThresholdSyntaxError(ValidationError):
    """Raised when a threshold expression cannot be parsed."""

    pass


class ReportSinkError(LoadSimError):
    """Raised when the report destination cannot be opened before a run."""

    pass
