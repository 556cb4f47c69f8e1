# ridetrack/common/__init__.py
"""
Общие утилиты: константы, исключения, логгер, локализация, троттлинг.
"""

from ridetrack.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from ridetrack.common.constants import TypeMsg
from ridetrack.common.localization import get_text, load_lang_dict
from ridetrack.common.rate_limiter import RateLimiter

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "get_text",
    "load_lang_dict",
    "RateLimiter",
]
