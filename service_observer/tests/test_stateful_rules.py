"""
Unit tests for the stateful visibility rules and the state manager.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from service_observer.app.domain.models import Observer
from service_observer.app.domain.query import GeoObjectQuery
from service_observer.app.engine.state_manager import ResolvedRule, StateManager
from service_observer.app.rules.base import with_state
from service_observer.app.rules.state import RequestLimitState, TimeLimitState
from service_observer.app.rules.stateful import RequestLimitRule, TimeLimitRule
from shared.errors import PersistenceConflictError


class TestRequestLimitRule:
    """Test cases for RequestLimitRule."""

    @pytest.fixture
    def rule(self, clock):
        return RequestLimitRule(clock)

    def test_initialize_state(self, rule, clock):
        state = rule.initialize_state({"limit": 3})

        assert state.remaining == 3
        assert state.initialized_at == int(clock().timestamp())
        assert state.last_used_at is None

    def test_update_decrements(self, rule, clock):
        state = rule.initialize_state({"limit": 3})
        clock.advance(10)

        updated = rule.update_state({"limit": 3}, state)

        assert updated.remaining == 2
        assert updated.last_used_at == int(clock().timestamp())
        assert state.remaining == 3

    def test_update_never_negative(self, rule):
        state = RequestLimitState(remaining=0, initialized_at=1)

        assert rule.update_state({"limit": 1}, state).remaining == 0

    def test_blocks_only_when_exhausted(self, rule):
        assert not rule.blocks_access({"limit": 1})
        assert not rule.blocks_access(with_state({"limit": 1}, RequestLimitState(remaining=1, initialized_at=1)))
        assert rule.blocks_access(with_state({"limit": 1}, RequestLimitState(remaining=0, initialized_at=1)))

    def test_exhausted_contributes_nothing(self, rule):
        config = with_state({"limit": 1}, RequestLimitState(remaining=0, initialized_at=1))

        query = GeoObjectQuery.for_map(1, datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert rule.apply_to_query(query, config).match_nothing
        assert rule.apply_to_objects([object()], config) == []

    def test_state_model_rejects_negative(self):
        with pytest.raises(ValidationError):
            RequestLimitState(remaining=-1, initialized_at=1)


class TestTimeLimitRule:
    """Test cases for TimeLimitRule."""

    @pytest.fixture
    def rule(self, clock):
        return TimeLimitRule(clock)

    def test_initialize_fixes_expiry(self, rule, clock):
        now = int(clock().timestamp())
        state = rule.initialize_state({"duration_seconds": 60})

        assert state.first_used_at == now
        assert state.expires_at == now + 60

    def test_update_keeps_expiry(self, rule, clock):
        state = rule.initialize_state({"duration_seconds": 60})
        clock.advance(30)

        updated = rule.update_state({"duration_seconds": 60}, state)

        assert updated.expires_at == state.expires_at
        assert updated.first_used_at == state.first_used_at
        assert updated.last_used_at == int(clock().timestamp())

    def test_no_state_allows(self, rule):
        assert not rule.blocks_access({"duration_seconds": 60})

    def test_blocks_after_expiry(self, rule, clock):
        now = int(clock().timestamp())
        config = with_state(
            {"duration_seconds": 60},
            TimeLimitState(first_used_at=now - 120, expires_at=now - 60)
        )

        assert rule.blocks_access(config)
        assert rule.apply_to_objects([object()], config) == []

    def test_allows_at_expiry_instant(self, rule, clock):
        now = int(clock().timestamp())
        config = with_state({"duration_seconds": 60}, TimeLimitState(first_used_at=now - 60, expires_at=now))

        assert not rule.blocks_access(config)


class TestStateManager:
    """Test cases for StateManager."""

    @pytest.fixture
    def store(self):
        return AsyncMock()

    @pytest.fixture
    def manager(self, store):
        return StateManager(store)

    @pytest.fixture
    def request_limit(self, clock):
        return RequestLimitRule(clock)

    def test_prepare_synthesizes_state(self, manager, request_limit):
        entry = ResolvedRule(key="request_limit", rule=request_limit, config={"limit": 2})

        prepared = manager.prepare([entry])

        assert prepared[0].config["_state"]["remaining"] == 2
        assert "_state" not in entry.config

    def test_prepare_keeps_existing_state(self, manager, request_limit):
        config = {"limit": 2, "_state": {"remaining": 1, "initialized_at": 5, "last_used_at": None}}
        entry = ResolvedRule(key="request_limit", rule=request_limit, config=config)

        assert manager.prepare([entry])[0] is entry

    def test_advance_does_not_mutate(self, manager, request_limit):
        rule_set = {"request_limit": {"limit": 2}, "ObjectIdRule": [1]}
        prepared = manager.prepare([ResolvedRule("request_limit", request_limit, rule_set["request_limit"])])

        updated = manager.advance(rule_set, prepared)

        assert rule_set == {"request_limit": {"limit": 2}, "ObjectIdRule": [1]}
        assert updated["request_limit"]["_state"]["remaining"] == 1
        assert updated["ObjectIdRule"] == [1]
        assert manager.has_changes(rule_set, updated)

    def test_advance_reinitializes_unreadable_state(self, manager, request_limit):
        config = {"limit": 4, "_state": {"remaining": "lots", "initialized_at": 5}}
        rule_set = {"request_limit": config}

        updated = manager.advance(rule_set, [ResolvedRule("request_limit", request_limit, config)])

        assert updated["request_limit"]["_state"]["remaining"] == 3

    def test_no_changes_without_stateful_rules(self, manager):
        rule_set = {"ObjectIdRule": [1]}

        assert not manager.has_changes(rule_set, manager.advance(rule_set, []))

    @pytest.mark.asyncio
    async def test_commit_writes_when_version_matches(self, manager, store):
        store.load.return_value = Observer(id=1, name="o", map_id=1, version=4)
        store.save_rules.return_value = 5

        version = await manager.commit(1, {"ObjectIdRule": [1]}, 4)

        assert version == 5
        store.save_rules.assert_awaited_once_with(1, {"ObjectIdRule": [1]}, 4)

    @pytest.mark.asyncio
    async def test_commit_conflict_on_moved_version(self, manager, store):
        store.load.return_value = Observer(id=1, name="o", map_id=1, version=6)

        with pytest.raises(PersistenceConflictError) as exc_info:
            await manager.commit(1, {}, 4)

        assert exc_info.value.actual_version == 6
        store.save_rules.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_conflict_on_missing_observer(self, manager, store):
        store.load.return_value = None

        with pytest.raises(PersistenceConflictError):
            await manager.commit(1, {}, 1)
