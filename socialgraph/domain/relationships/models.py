"""Domain models for follows, connections and collaborations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID


class RelationshipType(str, Enum):
	"""Kinds of directed edges between two users."""

	FOLLOWING = "following"
	CONNECTED = "connected"
	COLLABORATING = "collaborating"

	@property
	def is_mutual(self) -> bool:
		return self is not RelationshipType.FOLLOWING

	@property
	def action(self) -> "ActionType":
		return _ACTION_BY_TYPE[self]


class RelationshipStatus(str, Enum):
	"""Edge states tracked in the database."""

	ACTIVE = "active"
	PENDING = "pending"
	REJECTED = "rejected"


class ActionType(str, Enum):
	"""Rate-limited relationship actions."""

	FOLLOW = "follow"
	CONNECT = "connect"
	COLLABORATE = "collaborate"

	@property
	def relationship_type(self) -> RelationshipType:
		return _TYPE_BY_ACTION[self]


class ProfilePrivacy(str, Enum):
	PUBLIC = "public"
	CONNECTIONS = "connections"
	PRIVATE = "private"


class RelationshipListType(str, Enum):
	FOLLOWERS = "followers"
	FOLLOWING = "following"
	CONNECTIONS = "connections"
	COLLABORATORS = "collaborators"
	PENDING = "pending"


_TYPE_BY_ACTION = {
	ActionType.FOLLOW: RelationshipType.FOLLOWING,
	ActionType.CONNECT: RelationshipType.CONNECTED,
	ActionType.COLLABORATE: RelationshipType.COLLABORATING,
}
_ACTION_BY_TYPE = {value: key for key, value in _TYPE_BY_ACTION.items()}


# Quotas per rolling window: (new account, verified account)
ACTION_LIMITS: dict[ActionType, tuple[int, int]] = {
	ActionType.FOLLOW: (30, 50),
	ActionType.CONNECT: (20, 35),
	ActionType.COLLABORATE: (5, 10),
}

BASE_COOLDOWN_HOURS = 24

RAPID_ACTIONS_THRESHOLD = 10
RAPID_ACTIONS_WINDOW = timedelta(minutes=5)
MAX_STRIKES_BEFORE_REVIEW = 3
PENALTY_COOLDOWN_MULTIPLIER = 2.0

REQUEST_MESSAGE_MIN_LENGTH = 10
REQUEST_MESSAGE_MAX_LENGTH = 200

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def limit_for_action(action: ActionType, trusted: bool) -> int:
	new_limit, verified_limit = ACTION_LIMITS[action]
	return verified_limit if trusted else new_limit


def _uuid(value: Any) -> UUID:
	return value if isinstance(value, UUID) else UUID(str(value))


@dataclass(slots=True)
class RelationshipEdge:
	"""Directed relationship record between two users."""

	from_user_id: UUID
	to_user_id: UUID
	relationship_type: RelationshipType
	status: RelationshipStatus
	id: Optional[UUID] = None
	request_message: Optional[str] = None
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	accepted_at: Optional[datetime] = None

	@property
	def key(self) -> tuple[UUID, UUID, RelationshipType]:
		return (self.from_user_id, self.to_user_id, self.relationship_type)

	def mirrored(self) -> "RelationshipEdge":
		return RelationshipEdge(
			from_user_id=self.to_user_id,
			to_user_id=self.from_user_id,
			relationship_type=self.relationship_type,
			status=RelationshipStatus.ACTIVE,
		)

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "RelationshipEdge":
		return cls(
			id=_uuid(record["id"]),
			from_user_id=_uuid(record["from_user_id"]),
			to_user_id=_uuid(record["to_user_id"]),
			relationship_type=RelationshipType(record["relationship_type"]),
			status=RelationshipStatus(record["status"]),
			request_message=record.get("request_message"),
			created_at=record.get("created_at"),
			updated_at=record.get("updated_at"),
			accepted_at=record.get("accepted_at"),
		)


@dataclass(slots=True)
class RateLimitRecord:
	"""Per user and action counter for the current quota window."""

	user_id: UUID
	action_type: ActionType
	action_count: int
	window_start: datetime
	cooldown_multiplier: float = 1.0

	def window_length(self, base_hours: int = BASE_COOLDOWN_HOURS) -> timedelta:
		return timedelta(hours=base_hours * self.cooldown_multiplier)

	def expires_at(self, base_hours: int = BASE_COOLDOWN_HOURS) -> datetime:
		return self.window_start + self.window_length(base_hours)

	def is_expired(self, now: datetime, base_hours: int = BASE_COOLDOWN_HOURS) -> bool:
		return now - self.window_start > self.window_length(base_hours)

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "RateLimitRecord":
		return cls(
			user_id=_uuid(record["user_id"]),
			action_type=ActionType(record["action_type"]),
			action_count=int(record["action_count"]),
			window_start=record["window_start"],
			cooldown_multiplier=float(record["cooldown_multiplier"]),
		)


@dataclass(slots=True)
class SpamFlag:
	"""Strike counter for one detection type."""

	user_id: UUID
	detection_type: str
	flag_count: int
	last_flagged_at: datetime
	requires_review: bool = False
	reviewed_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "SpamFlag":
		return cls(
			user_id=_uuid(record["user_id"]),
			detection_type=str(record["detection_type"]),
			flag_count=int(record["flag_count"]),
			last_flagged_at=record["last_flagged_at"],
			requires_review=bool(record["requires_review"]),
			reviewed_at=record.get("reviewed_at"),
		)


@dataclass(slots=True)
class UserProfile:
	"""The slice of the user record the relationship core reads."""

	id: UUID
	username: str
	display_name: Optional[str] = None
	profile_privacy: ProfilePrivacy = ProfilePrivacy.PUBLIC
	is_verified: bool = False
	is_email_verified: bool = False
	followers_count: int = 0
	following_count: int = 0
	profile_picture: Optional[str] = None
	bio: Optional[str] = None

	@property
	def is_trusted(self) -> bool:
		return self.is_verified or self.is_email_verified

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "UserProfile":
		return cls(
			id=_uuid(record["id"]),
			username=str(record["username"]),
			display_name=record.get("display_name"),
			profile_privacy=ProfilePrivacy(record.get("profile_privacy") or ProfilePrivacy.PUBLIC.value),
			is_verified=bool(record.get("is_verified")),
			is_email_verified=bool(record.get("is_email_verified")),
			followers_count=int(record.get("followers_count") or 0),
			following_count=int(record.get("following_count") or 0),
			profile_picture=record.get("profile_picture"),
			bio=record.get("bio"),
		)


@dataclass(slots=True)
class RelationshipListEntry:
	"""One page row of a relationship list: the edge and the user on the other end."""

	edge_id: UUID
	user_id: UUID
	relationship_type: RelationshipType
	status: RelationshipStatus
	created_at: Optional[datetime] = None


@dataclass(slots=True)
class SpamAssessment:
	"""Aggregate spam state across all detection types for one user."""

	flags: list[SpamFlag] = field(default_factory=list)

	@property
	def has_flags(self) -> bool:
		return bool(self.flags)

	@property
	def total_flags(self) -> int:
		return sum(flag.flag_count for flag in self.flags)

	@property
	def requires_review(self) -> bool:
		return any(flag.requires_review for flag in self.flags)
