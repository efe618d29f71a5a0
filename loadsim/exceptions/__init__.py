"""Custom exceptions for the load simulator."""

from loadsim.exceptions.base import (
    ConfigurationError,
    LoadSimError,
    ReportSinkError,
    ThresholdSyntaxError,
    ValidationError,
)

__all__ = [
    "LoadSimError",
    "ValidationError",
    "ConfigurationError",
    "ThresholdSyntaxError",
    "ReportSinkError",
]
