"""Core infrastructure: settings, logging, exceptions."""

from .config import Settings, get_settings, settings
from .exceptions import (
    AppException,
    BadRequestError,
    ExternalServiceError,
    InvalidIndexConfigError,
    JobError,
    NonTradingDayError,
    NotFoundError,
    ValidationError,
)
from .logging import get_logger, setup_logging

__all__ = [
    "AppException",
    "BadRequestError",
    "ExternalServiceError",
    "InvalidIndexConfigError",
    "JobError",
    "NonTradingDayError",
    "NotFoundError",
    "Settings",
    "ValidationError",
    "get_logger",
    "get_settings",
    "settings",
    "setup_logging",
]
