# ridehail/common/__init__.py
"""
Общие утилиты, константы, ошибки и логгер.
"""

from ridehail.common.constants import TypeMsg
from ridehail.common.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RideError,
    UnauthorizedError,
    ValidationError,
)
from ridehail.common.logger import get_logger, log_debug, log_error, log_info, log_warning

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "RideError",
    "NotFoundError",
    "ConflictError",
    "InvalidTransitionError",
    "ValidationError",
    "UnauthorizedError",
    "ForbiddenError",
]
