"""
Channel Registry

Maps a channel type key ("booking-com", "agoda", "expedia") to the connector
that speaks its protocol. The orchestrator only ever looks connectors up here.
"""

import logging
from functools import lru_cache
from typing import Dict, List, Optional

from ..config import Settings, settings as default_settings
from .connectors import AgodaConnector, BookingComConnector, ChannelConnector, ExpediaConnector
from .rate_limiter import RequestThrottle
from .transport import ResilientTransport

logger = logging.getLogger(__name__)


class ChannelRegistry:
    def __init__(self):
        self._connectors: Dict[str, ChannelConnector] = {}

    def register(self, connector: ChannelConnector, channel_type: Optional[str] = None) -> None:
        key = channel_type or connector.channel_type
        if key in self._connectors:
            logger.warning(f"Replacing connector registered for channel type {key}")
        self._connectors[key] = connector

    def get(self, channel_type: str) -> Optional[ChannelConnector]:
        return self._connectors.get(channel_type)

    def channel_types(self) -> List[str]:
        return sorted(self._connectors)

    def __contains__(self, channel_type: str) -> bool:
        return channel_type in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)

    def close(self) -> None:
        """Close each distinct transport behind the registered connectors"""
        closed = []
        for connector in self._connectors.values():
            transport = connector.transport
            if any(transport is seen for seen in closed):
                continue
            transport.close()
            closed.append(transport)


def build_default_registry(
    config: Optional[Settings] = None,
    transport: Optional[ResilientTransport] = None,
    throttle: Optional[RequestThrottle] = None
) -> ChannelRegistry:
    """Registry with the built-in connectors, sharing one transport and throttle"""
    config = config or default_settings
    transport = transport or ResilientTransport(config=config)
    throttle = throttle or RequestThrottle()

    registry = ChannelRegistry()
    registry.register(BookingComConnector(
        transport=transport,
        throttle=throttle,
        base_url=config.booking_com_base_url,
        requests_per_minute=config.booking_com_requests_per_minute,
        config=config
    ))
    registry.register(AgodaConnector(
        transport=transport,
        throttle=throttle,
        base_url=config.agoda_base_url,
        requests_per_minute=config.agoda_requests_per_minute,
        config=config
    ))
    registry.register(ExpediaConnector(
        transport=transport,
        throttle=throttle,
        base_url=config.expedia_base_url,
        requests_per_minute=config.expedia_requests_per_minute,
        config=config
    ))

    logger.info(f"Channel registry ready: {', '.join(registry.channel_types())}")
    return registry


@lru_cache()
def get_default_registry() -> ChannelRegistry:
    """Process-wide registry built from the environment settings"""
    return build_default_registry()


def close_default_registry() -> None:
    """Release the process-wide registry's HTTP connections, if it was built"""
    if get_default_registry.cache_info().currsize:
        get_default_registry().close()
        get_default_registry.cache_clear()
