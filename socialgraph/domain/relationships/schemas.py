"""Pydantic schemas returned by the relationship service."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from socialgraph.domain.relationships.models import (
	ActionType,
	RelationshipStatus,
	RelationshipType,
)


class RateLimitStatus(BaseModel):
	action: ActionType
	limit: int
	used: int
	remaining: int = Field(..., ge=0)
	resets_at: datetime
	cooldown_multiplier: float = 1.0


class RelationshipSummary(BaseModel):
	id: Optional[UUID] = None
	from_user_id: UUID
	to_user_id: UUID
	relationship_type: RelationshipType
	status: RelationshipStatus
	request_message: Optional[str] = None
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	accepted_at: Optional[datetime] = None


class RelationshipResponse(BaseModel):
	"""Uniform envelope for every state-changing relationship call."""

	success: bool
	message: str
	relationship: Optional[RelationshipSummary] = None
	rate_limit: Optional[RateLimitStatus] = None


class RelationshipStatusView(BaseModel):
	is_following: bool = False
	is_follower: bool = False
	is_connected: bool = False
	is_collaborating: bool = False
	has_pending: bool = False
	has_incoming_request: bool = False


class RelationshipStats(BaseModel):
	followers_count: int = 0
	following_count: int = 0
	connections_count: int = 0
	collaborators_count: int = 0


class RelationshipListItem(BaseModel):
	id: UUID
	username: str
	display_name: Optional[str] = None
	profile_picture: Optional[str] = None
	is_verified: bool = False
	bio: Optional[str] = None
	followers_count: int = 0
	request_id: Optional[UUID] = None
	relationship_type: Optional[RelationshipType] = None


class RelationshipListResponse(BaseModel):
	success: bool = True
	items: List[RelationshipListItem] = Field(default_factory=list)
	total: int = 0
	page: int = 1
	limit: int = 20


class RateLimitOverview(BaseModel):
	follow: RateLimitStatus
	connect: RateLimitStatus
	collaborate: RateLimitStatus
	requested: RateLimitStatus


class SpamFlagView(BaseModel):
	detection_type: str
	flag_count: int
	last_flagged_at: datetime
	requires_review: bool


class SpamStatus(BaseModel):
	has_flags: bool = False
	requires_review: bool = False
	total_flags: int = 0
	flags: List[SpamFlagView] = Field(default_factory=list)
