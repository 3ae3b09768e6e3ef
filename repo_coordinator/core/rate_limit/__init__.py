from .config import (
    DEFAULT_CONCURRENCY,
    DEFAULT_LIMITS,
    ApiCategory,
    api_category_for,
)
from .service import RateLimitTracker, RateLimitWindow

__all__ = [
    "ApiCategory",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_LIMITS",
    "RateLimitTracker",
    "RateLimitWindow",
    "api_category_for",
]
