"""PostgreSQL-backed repositories for the relationship core."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Sequence
from uuid import UUID, uuid4

import asyncpg

from socialgraph.domain.relationships.exceptions import EdgeAlreadyExists
from socialgraph.domain.relationships.models import (
	ActionType,
	RateLimitRecord,
	RelationshipEdge,
	RelationshipListEntry,
	RelationshipListType,
	RelationshipStatus,
	RelationshipType,
	SpamFlag,
	UserProfile,
)
from socialgraph.domain.relationships.repository import (
	LIST_QUERIES,
	RateLimitMutation,
	RateLimitRepository,
	RelationshipRepository,
	SpamFlagMutation,
	SpamFlagRepository,
	UserDirectory,
)

_EDGE_COLUMNS = """
id, from_user_id, to_user_id, relationship_type, status, request_message,
created_at, updated_at, accepted_at
"""

_USER_COLUMNS = """
id, username, display_name, profile_privacy, is_verified, is_email_verified,
followers_count, following_count, profile_picture, bio
"""


def _edge_from_record(record: Mapping[str, Any]) -> RelationshipEdge:
	return RelationshipEdge.from_record(record)


def _rate_limit_from_record(record: Mapping[str, Any]) -> RateLimitRecord:
	return RateLimitRecord.from_record(record)


def _spam_flag_from_record(record: Mapping[str, Any]) -> SpamFlag:
	return SpamFlag.from_record(record)


def _list_entry_from_record(record: Mapping[str, Any]) -> RelationshipListEntry:
	return RelationshipListEntry(
		edge_id=UUID(str(record["id"])),
		user_id=UUID(str(record["other_user_id"])),
		relationship_type=RelationshipType(record["relationship_type"]),
		status=RelationshipStatus(record["status"]),
		created_at=record.get("created_at"),
	)


def _list_filter(list_type: RelationshipListType) -> tuple[str, str, list[str], str]:
	"""Return (anchor column, other column, types, status) for a list query."""
	query = LIST_QUERIES[list_type]
	anchor, other = ("to_user_id", "from_user_id") if query.incoming else ("from_user_id", "to_user_id")
	return anchor, other, [item.value for item in query.relationship_types], query.status.value


class PostgresRelationshipRepository(RelationshipRepository, RateLimitRepository, SpamFlagRepository):
	"""Persists edges, quota windows and spam strikes using asyncpg."""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self.pool = pool

	# --- Edges --------------------------------------------------------------

	async def create_edge(self, edge: RelationshipEdge) -> RelationshipEdge:
		query = f"""
		INSERT INTO user_relationships (id, from_user_id, to_user_id, relationship_type, status, request_message,
			created_at, updated_at, accepted_at)
		VALUES ($1, $2, $3, $4, $5, $6, now(), now(), CASE WHEN $5 = 'active' THEN now() ELSE NULL END)
		RETURNING {_EDGE_COLUMNS}
		"""
		try:
			record = await self.pool.fetchrow(
				query,
				edge.id or uuid4(),
				edge.from_user_id,
				edge.to_user_id,
				edge.relationship_type.value,
				edge.status.value,
				edge.request_message,
			)
		except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
			raise EdgeAlreadyExists() from exc
		assert record is not None
		return _edge_from_record(record)

	async def get_edge(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> RelationshipEdge | None:
		query = f"""
		SELECT {_EDGE_COLUMNS}
		FROM user_relationships
		WHERE from_user_id = $1 AND to_user_id = $2 AND relationship_type = $3
		"""
		record = await self.pool.fetchrow(query, from_user_id, to_user_id, relationship_type.value)
		return _edge_from_record(record) if record else None

	async def get_edge_by_id(self, edge_id: UUID) -> RelationshipEdge | None:
		query = f"SELECT {_EDGE_COLUMNS} FROM user_relationships WHERE id = $1"
		record = await self.pool.fetchrow(query, edge_id)
		return _edge_from_record(record) if record else None

	async def update_edge_status(self, edge_id: UUID, status: RelationshipStatus) -> RelationshipEdge | None:
		query = f"""
		UPDATE user_relationships
		SET status = $2,
			updated_at = now(),
			accepted_at = CASE WHEN $2 = 'active' THEN now() ELSE accepted_at END
		WHERE id = $1
		RETURNING {_EDGE_COLUMNS}
		"""
		record = await self.pool.fetchrow(query, edge_id, status.value)
		return _edge_from_record(record) if record else None

	async def delete_edge(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> bool:
		record = await self.pool.fetchrow(
			"""
			DELETE FROM user_relationships
			WHERE from_user_id = $1 AND to_user_id = $2 AND relationship_type = $3
			RETURNING id
			""",
			from_user_id,
			to_user_id,
			relationship_type.value,
		)
		return record is not None

	async def list_edges(
		self,
		user_id: UUID,
		list_type: RelationshipListType,
		*,
		offset: int,
		limit: int,
	) -> tuple[list[RelationshipListEntry], int]:
		anchor, other, types, status = _list_filter(list_type)
		records = await self.pool.fetch(
			f"""
			SELECT id, {other} AS other_user_id, relationship_type, status, created_at
			FROM user_relationships
			WHERE {anchor} = $1 AND relationship_type = ANY($2::text[]) AND status = $3
			ORDER BY created_at DESC, id DESC
			OFFSET $4 LIMIT $5
			""",
			user_id,
			types,
			status,
			offset,
			limit,
		)
		total = await self.count_edges(user_id, list_type)
		return [_list_entry_from_record(record) for record in records], total

	async def count_edges(self, user_id: UUID, list_type: RelationshipListType) -> int:
		anchor, _, types, status = _list_filter(list_type)
		value = await self.pool.fetchval(
			f"""
			SELECT COUNT(*)
			FROM user_relationships
			WHERE {anchor} = $1 AND relationship_type = ANY($2::text[]) AND status = $3
			""",
			user_id,
			types,
			status,
		)
		return int(value or 0)

	# --- Rate limits --------------------------------------------------------

	async def get_rate_limit(self, user_id: UUID, action: ActionType) -> RateLimitRecord | None:
		record = await self.pool.fetchrow(
			"""
			SELECT user_id, action_type, action_count, window_start, cooldown_multiplier
			FROM relationship_rate_limits
			WHERE user_id = $1 AND action_type = $2
			""",
			user_id,
			action.value,
		)
		return _rate_limit_from_record(record) if record else None

	async def update_rate_limit(
		self,
		user_id: UUID,
		action: ActionType,
		mutate: RateLimitMutation,
	) -> RateLimitRecord:
		async with self.pool.acquire() as conn:
			async with conn.transaction():
				# The placeholder row holds the lock, so concurrent first writers queue behind it.
				created = await conn.fetchrow(
					"""
					INSERT INTO relationship_rate_limits (user_id, action_type)
					VALUES ($1, $2)
					ON CONFLICT (user_id, action_type) DO NOTHING
					RETURNING user_id
					""",
					user_id,
					action.value,
				)
				current = None
				if created is None:
					current = await conn.fetchrow(
						"""
						SELECT user_id, action_type, action_count, window_start, cooldown_multiplier
						FROM relationship_rate_limits
						WHERE user_id = $1 AND action_type = $2
						FOR UPDATE
						""",
						user_id,
						action.value,
					)
				updated = mutate(_rate_limit_from_record(current) if current else None)
				record = await conn.fetchrow(
					"""
					INSERT INTO relationship_rate_limits (user_id, action_type, action_count, window_start,
						cooldown_multiplier, updated_at)
					VALUES ($1, $2, $3, $4, $5, now())
					ON CONFLICT (user_id, action_type)
					DO UPDATE SET
						action_count = EXCLUDED.action_count,
						window_start = EXCLUDED.window_start,
						cooldown_multiplier = EXCLUDED.cooldown_multiplier,
						updated_at = now()
					RETURNING user_id, action_type, action_count, window_start, cooldown_multiplier
					""",
					user_id,
					action.value,
					updated.action_count,
					updated.window_start,
					updated.cooldown_multiplier,
				)
		assert record is not None
		return _rate_limit_from_record(record)

	async def delete_rate_limit(self, user_id: UUID, action: ActionType) -> None:
		await self.pool.execute(
			"DELETE FROM relationship_rate_limits WHERE user_id = $1 AND action_type = $2",
			user_id,
			action.value,
		)

	async def count_recent_actions(self, user_id: UUID, action: ActionType, since: datetime) -> int:
		value = await self.pool.fetchval(
			"""
			SELECT COUNT(*)
			FROM user_relationships
			WHERE from_user_id = $1 AND relationship_type = $2 AND created_at >= $3
			""",
			user_id,
			action.relationship_type.value,
			since,
		)
		return int(value or 0)

	# --- Spam flags ---------------------------------------------------------

	async def get_spam_flag(self, user_id: UUID, detection_type: str) -> SpamFlag | None:
		record = await self.pool.fetchrow(
			"""
			SELECT user_id, detection_type, flag_count, last_flagged_at, requires_review, reviewed_at
			FROM relationship_spam_flags
			WHERE user_id = $1 AND detection_type = $2
			""",
			user_id,
			detection_type,
		)
		return _spam_flag_from_record(record) if record else None

	async def update_spam_flag(
		self,
		user_id: UUID,
		detection_type: str,
		mutate: SpamFlagMutation,
	) -> SpamFlag:
		async with self.pool.acquire() as conn:
			async with conn.transaction():
				created = await conn.fetchrow(
					"""
					INSERT INTO relationship_spam_flags (user_id, detection_type)
					VALUES ($1, $2)
					ON CONFLICT (user_id, detection_type) DO NOTHING
					RETURNING user_id
					""",
					user_id,
					detection_type,
				)
				current = None
				if created is None:
					current = await conn.fetchrow(
						"""
						SELECT user_id, detection_type, flag_count, last_flagged_at, requires_review, reviewed_at
						FROM relationship_spam_flags
						WHERE user_id = $1 AND detection_type = $2
						FOR UPDATE
						""",
						user_id,
						detection_type,
					)
				updated = mutate(_spam_flag_from_record(current) if current else None)
				record = await conn.fetchrow(
					"""
					INSERT INTO relationship_spam_flags (user_id, detection_type, flag_count, last_flagged_at,
						requires_review, reviewed_at)
					VALUES ($1, $2, $3, $4, $5, $6)
					ON CONFLICT (user_id, detection_type)
					DO UPDATE SET
						flag_count = EXCLUDED.flag_count,
						last_flagged_at = EXCLUDED.last_flagged_at,
						requires_review = EXCLUDED.requires_review,
						reviewed_at = EXCLUDED.reviewed_at
					RETURNING user_id, detection_type, flag_count, last_flagged_at, requires_review, reviewed_at
					""",
					user_id,
					detection_type,
					updated.flag_count,
					updated.last_flagged_at,
					updated.requires_review,
					updated.reviewed_at,
				)
		assert record is not None
		return _spam_flag_from_record(record)

	async def list_spam_flags(self, user_id: UUID) -> Sequence[SpamFlag]:
		records = await self.pool.fetch(
			"""
			SELECT user_id, detection_type, flag_count, last_flagged_at, requires_review, reviewed_at
			FROM relationship_spam_flags
			WHERE user_id = $1
			ORDER BY last_flagged_at DESC
			""",
			user_id,
		)
		return [_spam_flag_from_record(record) for record in records]


class PostgresUserDirectory(UserDirectory):
	"""Reads profile fields and maintains the denormalised follow counters."""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self.pool = pool

	async def get_user(self, user_id: UUID) -> UserProfile | None:
		record = await self.pool.fetchrow(
			f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1 AND deleted_at IS NULL",
			user_id,
		)
		return UserProfile.from_record(record) if record else None

	async def _adjust(self, column: str, user_id: UUID, delta: int) -> None:
		await self.pool.execute(
			f"UPDATE users SET {column} = GREATEST(0, {column} + $2), updated_at = now() WHERE id = $1",
			user_id,
			delta,
		)

	async def increment_follower_count(self, user_id: UUID) -> None:
		await self._adjust("followers_count", user_id, 1)

	async def decrement_follower_count(self, user_id: UUID) -> None:
		await self._adjust("followers_count", user_id, -1)

	async def increment_following_count(self, user_id: UUID) -> None:
		await self._adjust("following_count", user_id, 1)

	async def decrement_following_count(self, user_id: UUID) -> None:
		await self._adjust("following_count", user_id, -1)


__all__ = [
	"PostgresRelationshipRepository",
	"PostgresUserDirectory",
]
