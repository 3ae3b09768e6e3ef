"""
Rate limit categories for the remote API.

Each remote operation is billed against one category with its own budget.
The category is derived from the operation name.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict


class ApiCategory(str, Enum):
    """Remote API budgets tracked independently."""

    CORE = "core"  # REST calls
    SEARCH = "search"  # Search endpoints, small budget
    GRAPHQL = "graphql"  # GraphQL and project-board calls


# Published budgets before any response headers are seen
DEFAULT_LIMITS: Dict[ApiCategory, int] = {
    ApiCategory.CORE: 5000,
    ApiCategory.SEARCH: 30,
    ApiCategory.GRAPHQL: 5000,
}

# Seconds until a window replenishes after it was reset
WINDOW_PERIODS: Dict[ApiCategory, float] = {
    ApiCategory.CORE: 3600.0,
    ApiCategory.SEARCH: 3600.0,
    ApiCategory.GRAPHQL: 3600.0,
}

# Below these, batches fall back to sequential execution
CRITICAL_REMAINING: Dict[ApiCategory, int] = {
    ApiCategory.CORE: 100,
    ApiCategory.SEARCH: 5,
}

DEFAULT_CONCURRENCY: Dict[ApiCategory, int] = {
    ApiCategory.CORE: 10,
    ApiCategory.SEARCH: 2,
    ApiCategory.GRAPHQL: 5,
}


def api_category_for(operation: str) -> ApiCategory:
    """Map an operation name to the budget it consumes"""
    name = operation.lower()
    if "search" in name:
        return ApiCategory.SEARCH
    if "graphql" in name or "project" in name:
        return ApiCategory.GRAPHQL
    return ApiCategory.CORE
