"""Persistence contracts for the relationship core plus in-memory implementations."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Sequence
from uuid import UUID, uuid4

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

Clock = Callable[[], datetime]
RateLimitMutation = Callable[[Optional[RateLimitRecord]], RateLimitRecord]
SpamFlagMutation = Callable[[Optional[SpamFlag]], SpamFlag]


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ListQuery:
	"""Which edges make up a relationship list and which end is the listed user."""

	incoming: bool
	relationship_types: tuple[RelationshipType, ...]
	status: RelationshipStatus


LIST_QUERIES: Dict[RelationshipListType, ListQuery] = {
	RelationshipListType.FOLLOWERS: ListQuery(True, (RelationshipType.FOLLOWING,), RelationshipStatus.ACTIVE),
	RelationshipListType.FOLLOWING: ListQuery(False, (RelationshipType.FOLLOWING,), RelationshipStatus.ACTIVE),
	RelationshipListType.CONNECTIONS: ListQuery(False, (RelationshipType.CONNECTED,), RelationshipStatus.ACTIVE),
	RelationshipListType.COLLABORATORS: ListQuery(False, (RelationshipType.COLLABORATING,), RelationshipStatus.ACTIVE),
	RelationshipListType.PENDING: ListQuery(
		True,
		(RelationshipType.CONNECTED, RelationshipType.COLLABORATING),
		RelationshipStatus.PENDING,
	),
}


class RelationshipRepository(Protocol):
	async def create_edge(self, edge: RelationshipEdge) -> RelationshipEdge:
		"""Insert-or-fail: raises EdgeAlreadyExists when the key is taken."""
		...

	async def get_edge(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> RelationshipEdge | None:
		...

	async def get_edge_by_id(self, edge_id: UUID) -> RelationshipEdge | None:
		...

	async def update_edge_status(self, edge_id: UUID, status: RelationshipStatus) -> RelationshipEdge | None:
		...

	async def delete_edge(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> bool:
		...

	async def list_edges(
		self,
		user_id: UUID,
		list_type: RelationshipListType,
		*,
		offset: int,
		limit: int,
	) -> tuple[list[RelationshipListEntry], int]:
		...

	async def count_edges(self, user_id: UUID, list_type: RelationshipListType) -> int:
		...


class RateLimitRepository(Protocol):
	async def get_rate_limit(self, user_id: UUID, action: ActionType) -> RateLimitRecord | None:
		...

	async def update_rate_limit(
		self,
		user_id: UUID,
		action: ActionType,
		mutate: RateLimitMutation,
	) -> RateLimitRecord:
		"""Atomically apply `mutate` to the current record (or None) and store the result."""
		...

	async def delete_rate_limit(self, user_id: UUID, action: ActionType) -> None:
		...

	async def count_recent_actions(self, user_id: UUID, action: ActionType, since: datetime) -> int:
		...


class SpamFlagRepository(Protocol):
	async def get_spam_flag(self, user_id: UUID, detection_type: str) -> SpamFlag | None:
		...

	async def update_spam_flag(
		self,
		user_id: UUID,
		detection_type: str,
		mutate: SpamFlagMutation,
	) -> SpamFlag:
		...

	async def list_spam_flags(self, user_id: UUID) -> Sequence[SpamFlag]:
		...


class UserDirectory(Protocol):
	async def get_user(self, user_id: UUID) -> UserProfile | None:
		...

	async def increment_follower_count(self, user_id: UUID) -> None:
		...

	async def decrement_follower_count(self, user_id: UUID) -> None:
		...

	async def increment_following_count(self, user_id: UUID) -> None:
		...

	async def decrement_following_count(self, user_id: UUID) -> None:
		...


class InMemoryRelationshipStore(RelationshipRepository, RateLimitRepository, SpamFlagRepository):
	"""Simple repository implementation for development and tests.

	Each coroutine runs its read-modify-write without awaiting in between, so
	updates are atomic with respect to other tasks on the same event loop.
	"""

	def __init__(self, *, clock: Clock | None = None) -> None:
		self._clock = clock or utcnow
		self.edges: dict[tuple[UUID, UUID, RelationshipType], RelationshipEdge] = {}
		self.rate_limits: dict[tuple[UUID, ActionType], RateLimitRecord] = {}
		self.spam_flags: dict[tuple[UUID, str], SpamFlag] = {}

	async def create_edge(self, edge: RelationshipEdge) -> RelationshipEdge:
		if edge.key in self.edges:
			raise EdgeAlreadyExists()
		now = self._clock()
		stored = replace(
			edge,
			id=edge.id or uuid4(),
			created_at=edge.created_at or now,
			updated_at=now,
			accepted_at=now if edge.status is RelationshipStatus.ACTIVE else None,
		)
		self.edges[stored.key] = stored
		return replace(stored)

	async def get_edge(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> RelationshipEdge | None:
		edge = self.edges.get((from_user_id, to_user_id, relationship_type))
		return replace(edge) if edge else None

	async def get_edge_by_id(self, edge_id: UUID) -> RelationshipEdge | None:
		for edge in self.edges.values():
			if edge.id == edge_id:
				return replace(edge)
		return None

	async def update_edge_status(self, edge_id: UUID, status: RelationshipStatus) -> RelationshipEdge | None:
		for key, edge in self.edges.items():
			if edge.id == edge_id:
				now = self._clock()
				updated = replace(
					edge,
					status=status,
					updated_at=now,
					accepted_at=now if status is RelationshipStatus.ACTIVE else edge.accepted_at,
				)
				self.edges[key] = updated
				return replace(updated)
		return None

	async def delete_edge(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> bool:
		return self.edges.pop((from_user_id, to_user_id, relationship_type), None) is not None

	def _matching(self, user_id: UUID, list_type: RelationshipListType) -> list[RelationshipEdge]:
		query = LIST_QUERIES[list_type]
		matched = []
		for edge in self.edges.values():
			anchor = edge.to_user_id if query.incoming else edge.from_user_id
			if anchor != user_id:
				continue
			if edge.relationship_type not in query.relationship_types or edge.status is not query.status:
				continue
			matched.append(edge)
		matched.sort(key=lambda item: item.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
		return matched

	async def list_edges(
		self,
		user_id: UUID,
		list_type: RelationshipListType,
		*,
		offset: int,
		limit: int,
	) -> tuple[list[RelationshipListEntry], int]:
		query = LIST_QUERIES[list_type]
		matched = self._matching(user_id, list_type)
		page = matched[offset : offset + limit]
		entries = [
			RelationshipListEntry(
				edge_id=edge.id,  # type: ignore[arg-type]
				user_id=edge.from_user_id if query.incoming else edge.to_user_id,
				relationship_type=edge.relationship_type,
				status=edge.status,
				created_at=edge.created_at,
			)
			for edge in page
		]
		return entries, len(matched)

	async def count_edges(self, user_id: UUID, list_type: RelationshipListType) -> int:
		return len(self._matching(user_id, list_type))

	async def get_rate_limit(self, user_id: UUID, action: ActionType) -> RateLimitRecord | None:
		record = self.rate_limits.get((user_id, action))
		return replace(record) if record else None

	async def update_rate_limit(
		self,
		user_id: UUID,
		action: ActionType,
		mutate: RateLimitMutation,
	) -> RateLimitRecord:
		current = self.rate_limits.get((user_id, action))
		updated = mutate(replace(current) if current else None)
		self.rate_limits[(user_id, action)] = updated
		return replace(updated)

	async def delete_rate_limit(self, user_id: UUID, action: ActionType) -> None:
		self.rate_limits.pop((user_id, action), None)

	async def count_recent_actions(self, user_id: UUID, action: ActionType, since: datetime) -> int:
		relationship_type = action.relationship_type
		return sum(
			1
			for edge in self.edges.values()
			if edge.from_user_id == user_id
			and edge.relationship_type is relationship_type
			and edge.created_at is not None
			and edge.created_at >= since
		)

	async def get_spam_flag(self, user_id: UUID, detection_type: str) -> SpamFlag | None:
		flag = self.spam_flags.get((user_id, detection_type))
		return replace(flag) if flag else None

	async def update_spam_flag(
		self,
		user_id: UUID,
		detection_type: str,
		mutate: SpamFlagMutation,
	) -> SpamFlag:
		current = self.spam_flags.get((user_id, detection_type))
		updated = mutate(replace(current) if current else None)
		self.spam_flags[(user_id, detection_type)] = updated
		return replace(updated)

	async def list_spam_flags(self, user_id: UUID) -> Sequence[SpamFlag]:
		return [replace(flag) for (owner, _), flag in self.spam_flags.items() if owner == user_id]


class InMemoryUserDirectory(UserDirectory):
	"""User directory backed by a dict, for development and tests."""

	def __init__(self, users: Sequence[UserProfile] = ()) -> None:
		self.users: dict[UUID, UserProfile] = {user.id: user for user in users}

	def add(self, user: UserProfile) -> UserProfile:
		self.users[user.id] = user
		return user

	async def get_user(self, user_id: UUID) -> UserProfile | None:
		user = self.users.get(user_id)
		return replace(user) if user else None

	async def increment_follower_count(self, user_id: UUID) -> None:
		user = self.users.get(user_id)
		if user is not None:
			user.followers_count += 1

	async def decrement_follower_count(self, user_id: UUID) -> None:
		user = self.users.get(user_id)
		if user is not None:
			user.followers_count = max(0, user.followers_count - 1)

	async def increment_following_count(self, user_id: UUID) -> None:
		user = self.users.get(user_id)
		if user is not None:
			user.following_count += 1

	async def decrement_following_count(self, user_id: UUID) -> None:
		user = self.users.get(user_id)
		if user is not None:
			user.following_count = max(0, user.following_count - 1)
