from __future__ import annotations

import json
from typing import Any

# Single place for cache key construction


def canonical_params(params: Any) -> str:
    """Key-sorted, whitespace-free JSON so equal params map to one key"""
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


def cache_key(operation: str, params: Any) -> str:
    return f"{operation}:{canonical_params(params)}"
