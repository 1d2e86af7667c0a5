from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import asyncpg
import pytest

from socialgraph.domain.relationships.exceptions import EdgeAlreadyExists
from socialgraph.domain.relationships.models import (
    ActionType,
    ProfilePrivacy,
    RateLimitRecord,
    RelationshipEdge,
    RelationshipListType,
    RelationshipStatus,
    RelationshipType,
    SpamFlag,
    UserProfile,
)
from socialgraph.domain.relationships.postgres import (
    PostgresRelationshipRepository,
    PostgresUserDirectory,
    _USER_COLUMNS,
    _list_entry_from_record,
    _list_filter,
)

NOW = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
MIGRATION = Path(__file__).resolve().parents[2] / "migrations" / "0001_relationships.sql"


class FakeConnection:
    """Records statements issued inside a transaction."""

    def __init__(self, current: dict[str, Any] | None) -> None:
        self.current = current
        self.statements: list[tuple[str, tuple[object, ...]]] = []

    @asynccontextmanager
    async def transaction(self):
        yield

    async def fetchrow(self, query: str, *params: object) -> dict[str, Any] | None:
        self.statements.append((query, params))
        if "DO NOTHING" in query:
            return None if self.current is not None else {"user_id": params[0]}
        if "FOR UPDATE" in query:
            return self.current
        if "relationship_rate_limits" in query:
            user_id, action_type, action_count, window_start, multiplier = params
            return {
                "user_id": user_id,
                "action_type": action_type,
                "action_count": action_count,
                "window_start": window_start,
                "cooldown_multiplier": multiplier,
            }
        user_id, detection_type, flag_count, last_flagged_at, requires_review, reviewed_at = params
        return {
            "user_id": user_id,
            "detection_type": detection_type,
            "flag_count": flag_count,
            "last_flagged_at": last_flagged_at,
            "requires_review": requires_review,
            "reviewed_at": reviewed_at,
        }


class FakePool:
    """Lightweight asyncpg.Pool stand-in for unit tests."""

    def __init__(self, *, current: dict[str, Any] | None = None, fail_insert: bool = False) -> None:
        self.conn = FakeConnection(current)
        self.fail_insert = fail_insert
        self.executed: list[tuple[str, tuple[object, ...]]] = []

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def fetchrow(self, query: str, *params: object) -> dict[str, Any] | None:
        if "INSERT INTO user_relationships" in query:
            if self.fail_insert:
                raise asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
            edge_id, from_user, to_user, relationship_type, status, request_message = params
            return {
                "id": edge_id,
                "from_user_id": from_user,
                "to_user_id": to_user,
                "relationship_type": relationship_type,
                "status": status,
                "request_message": request_message,
                "created_at": NOW,
                "updated_at": NOW,
                "accepted_at": NOW if status == "active" else None,
            }
        return None

    async def execute(self, query: str, *params: object) -> str:
        self.executed.append((query, params))
        return "UPDATE 1"


def test_edge_from_record_parses_strings():
    edge_id = uuid4()
    edge = RelationshipEdge.from_record(
        {
            "id": str(edge_id),
            "from_user_id": str(uuid4()),
            "to_user_id": str(uuid4()),
            "relationship_type": "connected",
            "status": "pending",
            "request_message": "Let us work on the robotics club site",
            "created_at": NOW,
            "updated_at": NOW,
            "accepted_at": None,
        }
    )
    assert edge.id == edge_id
    assert edge.relationship_type is RelationshipType.CONNECTED
    assert edge.status is RelationshipStatus.PENDING
    mirror = edge.mirrored()
    assert mirror.from_user_id == edge.to_user_id
    assert mirror.status is RelationshipStatus.ACTIVE


def test_user_profile_from_record_defaults():
    user = UserProfile.from_record(
        {"id": uuid4(), "username": "dana", "profile_privacy": None, "followers_count": None}
    )
    assert user.profile_privacy is ProfilePrivacy.PUBLIC
    assert user.followers_count == 0
    assert not user.is_trusted


def test_list_filter_for_followers_and_pending():
    assert _list_filter(RelationshipListType.FOLLOWERS) == ("to_user_id", "from_user_id", ["following"], "active")
    anchor, other, types, status = _list_filter(RelationshipListType.PENDING)
    assert (anchor, other, status) == ("to_user_id", "from_user_id", "pending")
    assert types == ["connected", "collaborating"]


def test_list_entry_from_record():
    edge_id = uuid4()
    other = uuid4()
    entry = _list_entry_from_record(
        {
            "id": edge_id,
            "other_user_id": str(other),
            "relationship_type": "following",
            "status": "active",
            "created_at": NOW,
        }
    )
    assert entry.edge_id == edge_id
    assert entry.user_id == other


@pytest.mark.asyncio
async def test_create_edge_returns_stored_row():
    repo = PostgresRelationshipRepository(FakePool())
    edge = await repo.create_edge(
        RelationshipEdge(
            from_user_id=uuid4(),
            to_user_id=uuid4(),
            relationship_type=RelationshipType.FOLLOWING,
            status=RelationshipStatus.ACTIVE,
        )
    )
    assert edge.id is not None
    assert edge.accepted_at == NOW


@pytest.mark.asyncio
async def test_create_edge_maps_unique_violation():
    repo = PostgresRelationshipRepository(FakePool(fail_insert=True))
    with pytest.raises(EdgeAlreadyExists):
        await repo.create_edge(
            RelationshipEdge(
                from_user_id=uuid4(),
                to_user_id=uuid4(),
                relationship_type=RelationshipType.CONNECTED,
                status=RelationshipStatus.PENDING,
            )
        )


@pytest.mark.asyncio
async def test_update_rate_limit_applies_mutation_under_row_lock():
    user_id = uuid4()
    pool = FakePool(
        current={
            "user_id": user_id,
            "action_type": "follow",
            "action_count": 4,
            "window_start": NOW,
            "cooldown_multiplier": 1.0,
        }
    )
    repo = PostgresRelationshipRepository(pool)

    def _bump(record: RateLimitRecord | None) -> RateLimitRecord:
        assert record is not None
        record.action_count += 1
        return record

    updated = await repo.update_rate_limit(user_id, ActionType.FOLLOW, _bump)

    assert updated.action_count == 5
    queries = [query for query, _ in pool.conn.statements]
    assert "DO NOTHING" in queries[0]
    assert "FOR UPDATE" in queries[1]
    assert "DO UPDATE" in queries[2]


@pytest.mark.asyncio
async def test_update_spam_flag_creates_first_strike():
    user_id = uuid4()
    pool = FakePool()
    repo = PostgresRelationshipRepository(pool)

    def _strike(flag: SpamFlag | None) -> SpamFlag:
        assert flag is None
        return SpamFlag(user_id=user_id, detection_type="rapid_follow", flag_count=1, last_flagged_at=NOW)

    flag = await repo.update_spam_flag(user_id, "rapid_follow", _strike)

    assert flag.flag_count == 1
    assert not flag.requires_review
    queries = [query for query, _ in pool.conn.statements]
    assert len(queries) == 2
    assert "DO NOTHING" in queries[0]
    assert "DO UPDATE" in queries[1]


@pytest.mark.asyncio
async def test_update_rate_limit_first_write_locks_placeholder_row():
    user_id = uuid4()
    pool = FakePool()
    repo = PostgresRelationshipRepository(pool)

    def _penalise(record: RateLimitRecord | None) -> RateLimitRecord:
        assert record is None
        return RateLimitRecord(
            user_id=user_id,
            action_type=ActionType.CONNECT,
            action_count=0,
            window_start=NOW,
            cooldown_multiplier=2.0,
        )

    updated = await repo.update_rate_limit(user_id, ActionType.CONNECT, _penalise)

    assert updated.cooldown_multiplier == 2.0
    (placeholder, placeholder_params), (upsert, _) = pool.conn.statements
    assert "INSERT INTO relationship_rate_limits (user_id, action_type)" in placeholder
    assert "ON CONFLICT (user_id, action_type) DO NOTHING" in placeholder
    assert placeholder_params == (user_id, "connect")
    assert "DO UPDATE" in upsert


@pytest.mark.asyncio
async def test_user_directory_counters_never_go_negative():
    pool = FakePool()
    directory = PostgresUserDirectory(pool)
    user_id = uuid4()

    await directory.decrement_follower_count(user_id)
    await directory.increment_following_count(user_id)

    (first_query, first_params), (second_query, second_params) = pool.executed
    assert "GREATEST(0, followers_count + $2)" in first_query
    assert first_params == (user_id, -1)
    assert "following_count" in second_query
    assert second_params == (user_id, 1)


def test_migration_adds_directory_columns_to_existing_users_table():
    sql = MIGRATION.read_text()
    columns = [column.strip() for column in _USER_COLUMNS.split(",")]
    for column in [*columns, "updated_at", "deleted_at"]:
        if column in ("id", "username"):
            continue
        assert f"ALTER TABLE users ADD COLUMN IF NOT EXISTS {column} " in sql
