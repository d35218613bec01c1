"""
BaseConnector — Abstract base class for the trader's external integrations.

Connectors wrap a long-lived external dependency (Polymarket HTTP APIs, the
CLOB market WebSocket) behind a common lifecycle so the runtime can set them
up, tear them down and report their health in one place.

Usage:
    class MyConnector(BaseConnector):
        name = "my_service"
        icon = "🔌"
        description = "Connects to My Service API"

        async def teardown(self) -> None:
            await self._client.aclose()
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel


class ConnectorInfo(BaseModel):
    """Summary info for the status API."""

    name: str
    icon: str
    description: str
    healthy: bool = True


class BaseConnector(ABC):
    """
    Abstract base class for integration connectors.

    Subclasses MUST define ``name``, ``icon`` and ``description``; they MAY
    override ``setup()``, ``teardown()`` and ``health_check()``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique connector identifier (e.g. 'polymarket')."""
        ...

    @property
    @abstractmethod
    def icon(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    # ── Lifecycle Hooks ──────────────────────────────────────────────

    async def setup(self) -> None:
        """Called once at startup. Override for initialization."""
        pass

    async def teardown(self) -> None:
        """Called at shutdown. Override for cleanup."""
        pass

    async def health_check(self) -> bool:
        """Check if the connector is healthy and ready to use."""
        return True

    # ── Info ──────────────────────────────────────────────────────────

    def get_info(self, healthy: bool = True) -> ConnectorInfo:
        return ConnectorInfo(
            name=self.name,
            icon=self.icon,
            description=self.description,
            healthy=healthy,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
