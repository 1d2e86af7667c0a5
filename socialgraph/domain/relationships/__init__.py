"""Relationship domain exports."""

from . import audit, ledger, service, spam  # noqa: F401
from .models import (  # noqa: F401
	ACTION_LIMITS,
	BASE_COOLDOWN_HOURS,
	ActionType,
	ProfilePrivacy,
	RelationshipListType,
	RelationshipStatus,
	RelationshipType,
)
from .schemas import RateLimitStatus, RelationshipResponse  # noqa: F401
