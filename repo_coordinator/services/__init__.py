from .api_optimizer import ApiOptimizer, ApiRequest, RequestOutcome
from .issue_provider_manager import IssueProviderManager
from .request_scheduler import (
    BatchItemResult,
    BatchRequest,
    BatchStrategy,
    RequestPriority,
    RequestScheduler,
)

__all__ = [
    "ApiOptimizer",
    "ApiRequest",
    "BatchItemResult",
    "BatchRequest",
    "BatchStrategy",
    "IssueProviderManager",
    "RequestOutcome",
    "RequestPriority",
    "RequestScheduler",
]
