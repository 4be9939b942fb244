from .base import ChannelConnector, ChannelRejection
from .booking_com import BookingComConnector
from .agoda import AgodaConnector
from .expedia import ExpediaConnector

__all__ = [
    "ChannelConnector",
    "ChannelRejection",
    "BookingComConnector",
    "AgodaConnector",
    "ExpediaConnector",
]
