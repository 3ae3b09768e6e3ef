"""
Issue tracker provider interface.

A provider exposes one executor callback, `execute(operation, params)`, that
performs the remote call for a named operation. Capabilities are declared as
flags so callers can select a provider by what it supports.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class IssueProvider(str, Enum):
    GITHUB = "github"


class ProviderCapability(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    GET = "get"
    SEARCH = "search"


@dataclass(frozen=True)
class ProviderCapabilities:
    can_create: bool = True
    can_update: bool = True
    can_delete: bool = False
    can_list: bool = True
    can_get: bool = True
    can_search: bool = False
    can_assign: bool = False
    can_label: bool = False
    can_comment: bool = False
    supports_templates: bool = False
    max_title_length: Optional[int] = None
    max_description_length: Optional[int] = None

    def supports(self, capability: ProviderCapability) -> bool:
        return bool(getattr(self, f"can_{ProviderCapability(capability).value}"))


@dataclass
class ProviderHealthStatus:
    available: bool
    capabilities: ProviderCapabilities = field(default_factory=ProviderCapabilities)
    last_checked: float = field(default_factory=time.time)
    response_time: Optional[float] = None  # seconds
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IssueProviderBase(ABC):
    """Base class for issue tracker integrations"""

    provider_type: IssueProvider
    name: str = ""

    @abstractmethod
    async def execute(self, operation: str, params: Dict[str, Any]) -> Any:
        """Perform the remote call for `operation`; raise on failure"""

    @abstractmethod
    async def check_health(self) -> ProviderHealthStatus:
        pass

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        pass

    async def is_available(self) -> bool:
        return (await self.check_health()).available
