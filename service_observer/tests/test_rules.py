"""
Unit tests for the stateless visibility rules.
"""

from datetime import datetime, timezone

import pytest

from service_observer.app.domain.query import GeoObjectQuery
from service_observer.app.rules.filters import ObjectIdRule, SideIdRule, TimeRangeRule, parse_time_of_day

NOW = datetime(2025, 6, 2, 12, 0, 0, tzinfo=timezone.utc)


class TestObjectIdRule:
    """Test cases for ObjectIdRule."""

    @pytest.fixture
    def rule(self):
        return ObjectIdRule()

    @pytest.fixture
    def query(self):
        return GeoObjectQuery.for_map(1, NOW)

    def test_restricts_query(self, rule, query):
        result = rule.apply_to_query(query, [1, 2, 3])

        assert result.object_ids == frozenset({1, 2, 3})
        assert result.map_id == 1

    def test_empty_config_is_identity(self, rule, query):
        assert rule.apply_to_query(query, []) is query
        assert rule.apply_to_query(query, None) is query

    def test_invalid_ids_ignored(self, rule, query):
        result = rule.apply_to_query(query, [0, -4, "x", 2])

        assert result.object_ids == frozenset({2})

    def test_memory_phase_is_identity(self, rule):
        objects = [object(), object()]
        assert rule.apply_to_objects(objects, [1]) is objects

    def test_never_blocks(self, rule):
        assert rule.blocks_access([1]) is False


class TestSideIdRule:
    """Test cases for SideIdRule."""

    def test_restricts_query(self):
        query = SideIdRule().apply_to_query(GeoObjectQuery.for_map(1, NOW), [2, 3])

        assert query.side_ids == frozenset({2, 3})
        assert query.object_ids is None

    def test_composes_with_object_ids(self):
        query = GeoObjectQuery.for_map(1, NOW)
        query = ObjectIdRule().apply_to_query(query, [1, 2, 3])
        query = SideIdRule().apply_to_query(query, [1])

        assert query.object_ids == frozenset({1, 2, 3})
        assert query.side_ids == frozenset({1})


class TestTimeRangeRule:
    """Test cases for TimeRangeRule."""

    @pytest.fixture
    def rule(self, clock):
        return TimeRangeRule(clock)

    def test_inside_window(self, rule):
        assert rule.is_within_time_range({"start_time": "09:00", "end_time": "17:00"})

    def test_outside_window(self, rule, clock):
        clock.set(datetime(2025, 6, 2, 18, 0, tzinfo=timezone.utc))

        assert not rule.is_within_time_range({"start_time": "09:00", "end_time": "17:00"})

    def test_bounds_are_inclusive(self, rule, clock):
        config = {"start_time": "09:00", "end_time": "17:00"}

        clock.set(datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc))
        assert rule.is_within_time_range(config)

        clock.set(datetime(2025, 6, 2, 17, 0, tzinfo=timezone.utc))
        assert rule.is_within_time_range(config)

        clock.set(datetime(2025, 6, 2, 17, 0, 1, tzinfo=timezone.utc))
        assert not rule.is_within_time_range(config)

    @pytest.mark.parametrize("hour,minute,expected", [
        (23, 0, True),
        (2, 30, True),
        (6, 0, True),
        (6, 1, False),
        (12, 0, False),
        (22, 0, True),
    ])
    def test_window_spanning_midnight(self, rule, clock, hour, minute, expected):
        clock.set(datetime(2025, 6, 2, hour, minute, tzinfo=timezone.utc))

        assert rule.is_within_time_range({"start_time": "22:00", "end_time": "06:00"}) is expected

    def test_timezone_applied(self, rule):
        # 12:00 UTC is 15:00 in Kyiv during summer time
        config = {"start_time": "14:00", "end_time": "16:00", "timezone": "Europe/Kyiv"}
        assert rule.is_within_time_range(config)

        config = {"start_time": "11:00", "end_time": "13:00", "timezone": "Europe/Kyiv"}
        assert not rule.is_within_time_range(config)

    @pytest.mark.parametrize("config", [
        None,
        {},
        {"start_time": "09:00"},
        {"start_time": "bogus", "end_time": "17:00"},
        {"start_time": "09:00", "end_time": "17:00", "timezone": "No/Such_Zone"},
        [1, 2],
    ])
    def test_unusable_config_allows_access(self, rule, clock, config):
        clock.set(datetime(2025, 6, 2, 3, 0, tzinfo=timezone.utc))

        assert rule.is_within_time_range(config)
        assert rule.blocks_access(config) is False

    def test_outside_window_hides_everything(self, rule, clock):
        clock.set(datetime(2025, 6, 2, 20, 0, tzinfo=timezone.utc))
        config = {"start_time": "09:00", "end_time": "17:00"}

        assert rule.apply_to_query(GeoObjectQuery.for_map(1, NOW), config).is_empty
        assert rule.apply_to_objects([object()], config) == []
        assert rule.blocks_access(config)

    def test_inside_window_is_identity(self, rule):
        config = {"start_time": "09:00", "end_time": "17:00"}
        query = GeoObjectQuery.for_map(1, NOW)
        objects = [object()]

        assert rule.apply_to_query(query, config) is query
        assert rule.apply_to_objects(objects, config) is objects


class TestParseTimeOfDay:
    """Test cases for parse_time_of_day."""

    def test_parses(self):
        parsed = parse_time_of_day("07:45")
        assert (parsed.hour, parsed.minute) == (7, 45)

    @pytest.mark.parametrize("value", ["7:45", "24:00", "12:60", "", None, 745])
    def test_rejects(self, value):
        with pytest.raises(ValueError):
            parse_time_of_day(value)
