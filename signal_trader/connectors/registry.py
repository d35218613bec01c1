"""
ConnectorRegistry — lifecycle management for the trader's connectors.

The runtime registers each connector once, then uses the registry to set
them all up at boot, tear them down at shutdown and aggregate health
checks for the /health endpoint. Setup failures propagate: the trader
does not start half-connected.
"""

import structlog

from signal_trader.connectors.base_connector import BaseConnector, ConnectorInfo

logger = structlog.get_logger(__name__)


class ConnectorRegistry:
    """Registration, lookup, lifecycle and health for connectors."""

    def __init__(self):
        self._connectors: dict[str, BaseConnector] = {}

    def register(self, connector: BaseConnector) -> None:
        """Register a connector by its name."""
        if connector.name in self._connectors:
            logger.warning("connector_already_registered", name=connector.name)
        self._connectors[connector.name] = connector
        logger.info(
            "connector_registered",
            name=connector.name,
            description=connector.description,
        )

    def get(self, name: str) -> BaseConnector:
        """Get a connector by name. Raises KeyError if not found."""
        if name not in self._connectors:
            available = list(self._connectors.keys())
            raise KeyError(f"Connector '{name}' not found. Available: {available}")
        return self._connectors[name]

    async def list_all(self) -> list[ConnectorInfo]:
        health = await self.health_check_all()
        return [c.get_info(healthy=health[name]) for name, c in self._connectors.items()]

    async def setup_all(self) -> None:
        for name, connector in self._connectors.items():
            await connector.setup()
            logger.info("connector_setup_complete", name=name)

    async def teardown_all(self) -> None:
        """Graceful shutdown of all connectors, in reverse registration order."""
        for name, connector in reversed(list(self._connectors.items())):
            try:
                await connector.teardown()
                logger.info("connector_teardown_complete", name=name)
            except Exception as e:
                logger.error("connector_teardown_failed", name=name, error=str(e))

    async def health_check_all(self) -> dict[str, bool]:
        results = {}
        for name, connector in self._connectors.items():
            try:
                results[name] = await connector.health_check()
            except Exception as e:
                logger.warning("connector_health_check_failed", name=name, error=str(e))
                results[name] = False
        return results

    @property
    def names(self) -> list[str]:
        return list(self._connectors.keys())

    def __len__(self) -> int:
        return len(self._connectors)

    def __contains__(self, name: str) -> bool:
        return name in self._connectors
