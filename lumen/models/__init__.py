"""Lumen Database Models."""

from lumen.models.journey import Journey, JourneyDevice, JourneyKey
from lumen.models.migration import MigrationToken
from lumen.models.content import Message, Response
from lumen.models.stats import UserStats

__all__ = [
    "Journey",
    "JourneyDevice",
    "JourneyKey",
    "MigrationToken",
    "Message",
    "Response",
    "UserStats",
]
