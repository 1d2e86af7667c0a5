"""Domain-level exceptions for relationships, quotas and spam controls."""

from __future__ import annotations

from typing import TYPE_CHECKING

from socialgraph.infra.rate_limit import RateLimitExceeded

if TYPE_CHECKING:  # pragma: no cover - type-only imports
	from socialgraph.domain.relationships.schemas import RateLimitStatus


class RelationshipError(Exception):
	"""Base class for relationship feature errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class UserNotFound(RelationshipError):
	reason = "user_not_found"


class RelationshipNotFound(RelationshipError):
	reason = "relationship_not_found"


class InvalidListType(RelationshipError):
	reason = "invalid_list_type"


class EdgeAlreadyExists(RelationshipError):
	"""Raised by repositories when the (from, to, type) key is already taken."""

	reason = "edge_exists"


class RelationshipRateLimitExceeded(RateLimitExceeded):
	"""Raised when the per-action quota for the current window is used up."""

	def __init__(self, message: str, status: "RateLimitStatus") -> None:
		super().__init__(message)
		self.message = message
		self.status = status


class SpamDetected(RelationshipError):
	"""Raised by the spam detector after it has penalised a burst of actions."""

	reason = "spam_detected"

	def __init__(self, message: str, *, requires_review: bool, flag_count: int) -> None:
		super().__init__("spam_review" if requires_review else "spam_warning")
		self.message = message
		self.requires_review = requires_review
		self.flag_count = flag_count
