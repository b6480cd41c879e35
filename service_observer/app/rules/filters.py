"""
Stateless visibility rules.
"""

import re
from datetime import time
from typing import Any, Dict, List
from zoneinfo import ZoneInfo

from ..domain.models import GeoObject
from ..domain.query import GeoObjectQuery
from .base import ObserverRule

TIME_OF_DAY_PATTERN = r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$"


class ObjectIdRule(ObserverRule):
    """Show only the listed objects."""

    name = "ObjectIdRule"
    priority = 50

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "array",
            "items": {"type": "integer", "minimum": 1},
            "minItems": 1,
            "maxItems": 100,
            "uniqueItems": True,
        }

    def apply_to_query(self, query: GeoObjectQuery, config: Any) -> GeoObjectQuery:
        if not config:
            return query
        return query.with_object_ids(config)


class SideIdRule(ObserverRule):
    """Show only objects belonging to the listed sides. Untagged objects are hidden."""

    name = "SideIdRule"
    priority = 75

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "array",
            "items": {"type": "integer", "minimum": 1},
            "minItems": 1,
            "maxItems": 50,
            "uniqueItems": True,
        }

    def apply_to_query(self, query: GeoObjectQuery, config: Any) -> GeoObjectQuery:
        if not config:
            return query
        return query.with_side_ids(config)


class TimeRangeRule(ObserverRule):
    """Allow access only inside a daily window such as 09:00-17:00.

    A window whose end is not after its start spans midnight (22:00-06:00).
    Missing or unparsable settings allow access.
    """

    name = "time_range"
    priority = 10

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "start_time": {
                    "type": "string",
                    "pattern": TIME_OF_DAY_PATTERN,
                    "description": "Start time in HH:MM format (24-hour)",
                },
                "end_time": {
                    "type": "string",
                    "pattern": TIME_OF_DAY_PATTERN,
                    "description": "End time in HH:MM format (24-hour)",
                },
                "timezone": {
                    "type": "string",
                    "format": "iana-timezone",
                    "description": "IANA timezone of the window (defaults to UTC)",
                },
            },
            "required": ["start_time", "end_time"],
            "additionalProperties": False,
        }

    def apply_to_query(self, query: GeoObjectQuery, config: Any) -> GeoObjectQuery:
        if self.blocks_access(config):
            return query.nothing()
        return query

    def apply_to_objects(self, objects: List[GeoObject], config: Any) -> List[GeoObject]:
        if self.blocks_access(config):
            return []
        return objects

    def blocks_access(self, config: Any) -> bool:
        return not self.is_within_time_range(config)

    def is_within_time_range(self, config: Any) -> bool:
        if not isinstance(config, dict) or "start_time" not in config or "end_time" not in config:
            return True

        try:
            tz = ZoneInfo(config.get("timezone") or "UTC")
            start = parse_time_of_day(config["start_time"])
            end = parse_time_of_day(config["end_time"])
        except (KeyError, ValueError, TypeError) as e:
            self.logger.debug("Unusable time range, allowing access", error=str(e))
            return True

        current = self.clock().astimezone(tz).time().replace(tzinfo=None)

        if end <= start:
            return current >= start or current <= end
        return start <= current <= end


def parse_time_of_day(value: Any) -> time:
    """Parse "HH:MM" (24-hour)."""
    if not isinstance(value, str) or not re.match(TIME_OF_DAY_PATTERN, value):
        raise ValueError(f"Invalid time format: {value}")
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))
