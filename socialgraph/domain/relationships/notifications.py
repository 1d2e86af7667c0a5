"""Notification capability consumed by the relationship service."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import UUID

import asyncpg

logger = logging.getLogger(__name__)


class NotificationService(Protocol):
	async def create_follow_notification(self, follower_id: UUID, followed_id: UUID, follower_username: str) -> None:
		...

	async def create_connection_request_notification(self, from_id: UUID, to_id: UUID, from_username: str) -> None:
		...

	async def create_connection_accepted_notification(
		self,
		acceptor_id: UUID,
		requester_id: UUID,
		acceptor_username: str,
	) -> None:
		...

	async def create_collaboration_request_notification(self, from_id: UUID, to_id: UUID, from_username: str) -> None:
		...

	async def create_collaboration_accepted_notification(
		self,
		acceptor_id: UUID,
		requester_id: UUID,
		acceptor_username: str,
	) -> None:
		...


class PostgresNotificationService(NotificationService):
	"""Persists in-app notifications into the notifications table."""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self._pool = pool

	async def _create(
		self,
		*,
		user_id: UUID,
		actor_id: UUID,
		title: str,
		body: str,
		kind: str,
		link: Optional[str] = None,
	) -> None:
		await self._pool.execute(
			"""
			INSERT INTO notifications (id, user_id, actor_id, title, body, kind, link, created_at)
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
			""",
			uuid.uuid4(),
			user_id,
			actor_id,
			title,
			body,
			kind,
			link,
			datetime.now(timezone.utc),
		)
		logger.debug("notification stored", extra={"kind": kind, "recipient": str(user_id)[:8]})

	async def create_follow_notification(self, follower_id: UUID, followed_id: UUID, follower_username: str) -> None:
		await self._create(
			user_id=followed_id,
			actor_id=follower_id,
			title="New follower",
			body=f"@{follower_username} started following you",
			kind="follow",
			link=f"/profile/{follower_username}",
		)

	async def create_connection_request_notification(self, from_id: UUID, to_id: UUID, from_username: str) -> None:
		await self._create(
			user_id=to_id,
			actor_id=from_id,
			title="Connection request",
			body=f"@{from_username} wants to connect with you",
			kind="connection_request",
			link="/relationships/pending",
		)

	async def create_connection_accepted_notification(
		self,
		acceptor_id: UUID,
		requester_id: UUID,
		acceptor_username: str,
	) -> None:
		await self._create(
			user_id=requester_id,
			actor_id=acceptor_id,
			title="Connection accepted",
			body=f"@{acceptor_username} accepted your connection request",
			kind="connection_accepted",
			link=f"/profile/{acceptor_username}",
		)

	async def create_collaboration_request_notification(self, from_id: UUID, to_id: UUID, from_username: str) -> None:
		await self._create(
			user_id=to_id,
			actor_id=from_id,
			title="Collaboration request",
			body=f"@{from_username} wants to collaborate with you",
			kind="collaboration_request",
			link="/relationships/pending",
		)

	async def create_collaboration_accepted_notification(
		self,
		acceptor_id: UUID,
		requester_id: UUID,
		acceptor_username: str,
	) -> None:
		await self._create(
			user_id=requester_id,
			actor_id=acceptor_id,
			title="Collaboration accepted",
			body=f"@{acceptor_username} accepted your collaboration request",
			kind="collaboration_accepted",
			link=f"/profile/{acceptor_username}",
		)
