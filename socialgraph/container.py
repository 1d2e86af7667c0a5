"""Lightweight service container wiring the relationship core."""

from __future__ import annotations

from typing import Optional

import asyncpg

from socialgraph.domain.relationships.ledger import RateLimitLedger
from socialgraph.domain.relationships.notifications import NotificationService, PostgresNotificationService
from socialgraph.domain.relationships.postgres import PostgresRelationshipRepository, PostgresUserDirectory
from socialgraph.domain.relationships.repository import (
	Clock,
	InMemoryRelationshipStore,
	InMemoryUserDirectory,
	RateLimitRepository,
	RelationshipRepository,
	SpamFlagRepository,
	UserDirectory,
)
from socialgraph.domain.relationships.service import RelationshipService
from socialgraph.domain.relationships.spam import SpamDetector
from socialgraph.infra.postgres import get_pool

_store = InMemoryRelationshipStore()
_users: UserDirectory = InMemoryUserDirectory()
_service: RelationshipService | None = None


def build_relationship_service(
	*,
	relationships: RelationshipRepository,
	rate_limits: RateLimitRepository,
	spam_flags: SpamFlagRepository,
	users: UserDirectory,
	notifications: Optional[NotificationService] = None,
	clock: Optional[Clock] = None,
) -> RelationshipService:
	"""Assemble ledger, detector and orchestrator over the given repositories."""
	ledger = RateLimitLedger(rate_limits, users, clock=clock)
	detector = SpamDetector(ledger, spam_flags, clock=clock)
	service = RelationshipService(relationships, users, ledger, detector)
	service.set_notification_service(notifications)
	return service


def configure(
	*,
	relationships: RelationshipRepository,
	rate_limits: RateLimitRepository,
	spam_flags: SpamFlagRepository,
	users: UserDirectory,
	notifications: Optional[NotificationService] = None,
	clock: Optional[Clock] = None,
) -> RelationshipService:
	global _service, _users
	_users = users
	_service = build_relationship_service(
		relationships=relationships,
		rate_limits=rate_limits,
		spam_flags=spam_flags,
		users=users,
		notifications=notifications,
		clock=clock,
	)
	return _service


def configure_postgres(pool: asyncpg.Pool, *, with_notifications: bool = True) -> RelationshipService:
	repo = PostgresRelationshipRepository(pool)
	return configure(
		relationships=repo,
		rate_limits=repo,
		spam_flags=repo,
		users=PostgresUserDirectory(pool),
		notifications=PostgresNotificationService(pool) if with_notifications else None,
	)


async def init_postgres() -> RelationshipService:
	pool = await get_pool()
	return configure_postgres(pool)


def reset_inmemory_state() -> RelationshipService:
	global _store
	_store = InMemoryRelationshipStore()
	return configure(
		relationships=_store,
		rate_limits=_store,
		spam_flags=_store,
		users=InMemoryUserDirectory(),
	)


def get_relationship_service() -> RelationshipService:
	if _service is None:
		return reset_inmemory_state()
	return _service


def get_user_directory() -> UserDirectory:
	return _users


__all__ = [
	"build_relationship_service",
	"configure",
	"configure_postgres",
	"get_relationship_service",
	"get_user_directory",
	"init_postgres",
	"reset_inmemory_state",
]
