from .base import (
    IssueProvider,
    IssueProviderBase,
    ProviderCapabilities,
    ProviderCapability,
    ProviderHealthStatus,
)

__all__ = [
    "IssueProvider",
    "IssueProviderBase",
    "ProviderCapabilities",
    "ProviderCapability",
    "ProviderHealthStatus",
]
