"""Service layer sequencing quotas, spam checks and graph writes for relationship actions."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Optional
from uuid import UUID

from socialgraph.domain.relationships import audit
from socialgraph.domain.relationships.exceptions import (
	EdgeAlreadyExists,
	InvalidListType,
	RelationshipNotFound,
	RelationshipRateLimitExceeded,
	SpamDetected,
	UserNotFound,
)
from socialgraph.domain.relationships.ledger import RateLimitLedger
from socialgraph.domain.relationships.models import (
	DEFAULT_PAGE_SIZE,
	MAX_PAGE_SIZE,
	REQUEST_MESSAGE_MAX_LENGTH,
	REQUEST_MESSAGE_MIN_LENGTH,
	ActionType,
	ProfilePrivacy,
	RelationshipEdge,
	RelationshipListType,
	RelationshipStatus,
	RelationshipType,
	UserProfile,
)
from socialgraph.domain.relationships.notifications import NotificationService
from socialgraph.domain.relationships.repository import RelationshipRepository, UserDirectory
from socialgraph.domain.relationships.schemas import (
	RateLimitOverview,
	RateLimitStatus,
	RelationshipListItem,
	RelationshipListResponse,
	RelationshipResponse,
	RelationshipStats,
	RelationshipStatusView,
	RelationshipSummary,
	SpamFlagView,
	SpamStatus,
)
from socialgraph.domain.relationships.spam import SpamDetector

logger = logging.getLogger(__name__)

_SELF_MESSAGES = {
	ActionType.FOLLOW: "You cannot follow yourself",
	ActionType.CONNECT: "You cannot connect with yourself",
	ActionType.COLLABORATE: "You cannot collaborate with yourself",
}

_ALREADY_MESSAGES = {
	(RelationshipType.FOLLOWING, RelationshipStatus.ACTIVE): "You are already following this user",
	(RelationshipType.CONNECTED, RelationshipStatus.ACTIVE): "You are already connected with this user",
	(RelationshipType.CONNECTED, RelationshipStatus.PENDING): "Your connection request is pending",
	(RelationshipType.COLLABORATING, RelationshipStatus.ACTIVE): "You are already collaborating with this user",
	(RelationshipType.COLLABORATING, RelationshipStatus.PENDING): "Your collaboration request is pending",
}


def _summary(edge: RelationshipEdge) -> RelationshipSummary:
	return RelationshipSummary(
		id=edge.id,
		from_user_id=edge.from_user_id,
		to_user_id=edge.to_user_id,
		relationship_type=edge.relationship_type,
		status=edge.status,
		request_message=edge.request_message,
		created_at=edge.created_at,
		updated_at=edge.updated_at,
		accepted_at=edge.accepted_at,
	)


def _edge_fields(edge: RelationshipEdge) -> dict[str, str]:
	return {
		"id": str(edge.id),
		"from": str(edge.from_user_id),
		"to": str(edge.to_user_id),
		"type": edge.relationship_type.value,
		"status": edge.status.value,
	}


def _already_message(edge: RelationshipEdge) -> str:
	return _ALREADY_MESSAGES.get(
		(edge.relationship_type, edge.status),
		"A relationship of this type already exists",
	)


def _clean_message(message: Optional[str]) -> tuple[Optional[str], Optional[str]]:
	"""Return (cleaned message, validation error)."""
	if message is None:
		return None, None
	cleaned = message.strip()
	if not cleaned:
		return None, None
	if not REQUEST_MESSAGE_MIN_LENGTH <= len(cleaned) <= REQUEST_MESSAGE_MAX_LENGTH:
		return None, (
			f"Request message must be between {REQUEST_MESSAGE_MIN_LENGTH} "
			f"and {REQUEST_MESSAGE_MAX_LENGTH} characters"
		)
	return cleaned, None


class RelationshipService:
	"""Use-case layer for follows, connections and collaborations.

	Expected business outcomes come back as ``success=False`` envelopes. Storage
	failures and unknown ids propagate. Counter updates, notifications and
	audit events are best-effort and never undo a committed edge.
	"""

	def __init__(
		self,
		relationships: RelationshipRepository,
		users: UserDirectory,
		ledger: RateLimitLedger,
		detector: SpamDetector,
	) -> None:
		self._relationships = relationships
		self._users = users
		self._ledger = ledger
		self._detector = detector
		self._notifications: Optional[NotificationService] = None

	def set_notification_service(self, notifications: Optional[NotificationService]) -> None:
		self._notifications = notifications

	# ----- state-changing operations -----

	async def follow_user(self, from_user_id: UUID, to_user_id: UUID) -> RelationshipResponse:
		action = ActionType.FOLLOW
		if from_user_id == to_user_id:
			return self._declined(action, _SELF_MESSAGES[action], "self")

		rate_limit, declined = await self._admit(from_user_id, action)
		if declined is not None:
			return declined

		target = await self._require_user(to_user_id)
		if target.profile_privacy is ProfilePrivacy.PRIVATE:
			return self._declined(action, "Cannot follow private profiles", "private")

		existing = await self._relationships.get_edge(from_user_id, to_user_id, RelationshipType.FOLLOWING)
		if existing is not None:
			return self._declined(action, "You are already following this user", "exists")

		edge = RelationshipEdge(
			from_user_id=from_user_id,
			to_user_id=to_user_id,
			relationship_type=RelationshipType.FOLLOWING,
			status=RelationshipStatus.ACTIVE,
		)
		try:
			created = await self._relationships.create_edge(edge)
		except EdgeAlreadyExists:
			return self._declined(action, "You are already following this user", "exists")

		rate_limit = await self._record(from_user_id, action, rate_limit)
		await self._adjust_follow_counters(from_user_id, to_user_id, increment=True)
		await self._notify(
			"notify_follow",
			from_user_id,
			lambda service, actor: service.create_follow_notification(from_user_id, to_user_id, actor.username),
		)
		await audit.log_relationship_event("followed", _edge_fields(created))
		audit.inc_action(action.value, "ok")
		return RelationshipResponse(
			success=True,
			message="Successfully followed user",
			relationship=_summary(created),
			rate_limit=rate_limit,
		)

	async def connect_with_user(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		message: Optional[str] = None,
	) -> RelationshipResponse:
		action = ActionType.CONNECT
		if from_user_id == to_user_id:
			return self._declined(action, _SELF_MESSAGES[action], "self")
		request_message, invalid = _clean_message(message)
		if invalid:
			return self._declined(action, invalid, "invalid_message")

		rate_limit, declined = await self._admit(from_user_id, action)
		if declined is not None:
			return declined

		target = await self._require_user(to_user_id)
		if target.profile_privacy is ProfilePrivacy.PRIVATE:
			return self._declined(action, "Cannot connect with private profiles", "private")

		blocked = await self._clear_resolved(from_user_id, to_user_id, RelationshipType.CONNECTED)
		if blocked is not None:
			return self._declined(action, _already_message(blocked), "exists")

		if target.profile_privacy is ProfilePrivacy.CONNECTIONS:
			status = RelationshipStatus.PENDING
			response_message = "Connection request sent. Waiting for approval."
		else:
			status = RelationshipStatus.ACTIVE
			response_message = "Successfully connected"

		edge = RelationshipEdge(
			from_user_id=from_user_id,
			to_user_id=to_user_id,
			relationship_type=RelationshipType.CONNECTED,
			status=status,
			request_message=request_message,
		)
		try:
			created = await self._relationships.create_edge(edge)
		except EdgeAlreadyExists:
			return await self._declined_existing(action, edge)

		if status is RelationshipStatus.ACTIVE:
			try:
				await self._create_mirror(created)
			except Exception:
				audit.inc_mirror_rollback(created.relationship_type.value)
				logger.exception(
					"mirrored connection failed, removing forward edge",
					extra={"from_user": str(from_user_id), "to_user": str(to_user_id)},
				)
				await self._relationships.delete_edge(from_user_id, to_user_id, RelationshipType.CONNECTED)
				raise

		rate_limit = await self._record(from_user_id, action, rate_limit)
		if status is RelationshipStatus.PENDING:
			await self._notify(
				"notify_connection_request",
				from_user_id,
				lambda service, actor: service.create_connection_request_notification(
					from_user_id, to_user_id, actor.username
				),
			)
		event = "connect_requested" if status is RelationshipStatus.PENDING else "connected"
		await audit.log_relationship_event(event, _edge_fields(created))
		audit.inc_action(action.value, status.value)
		return RelationshipResponse(
			success=True,
			message=response_message,
			relationship=_summary(created),
			rate_limit=rate_limit,
		)

	async def collaborate_with_user(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		message: Optional[str] = None,
	) -> RelationshipResponse:
		action = ActionType.COLLABORATE
		if from_user_id == to_user_id:
			return self._declined(action, _SELF_MESSAGES[action], "self")
		request_message, invalid = _clean_message(message)
		if invalid:
			return self._declined(action, invalid, "invalid_message")

		rate_limit, declined = await self._admit(from_user_id, action)
		if declined is not None:
			return declined

		await self._require_user(to_user_id)

		connection = await self._relationships.get_edge(from_user_id, to_user_id, RelationshipType.CONNECTED)
		if connection is None or connection.status is not RelationshipStatus.ACTIVE:
			return self._declined(
				action,
				"You must be connected with this user before collaborating",
				"not_connected",
			)

		blocked = await self._clear_resolved(from_user_id, to_user_id, RelationshipType.COLLABORATING)
		if blocked is not None:
			return self._declined(action, _already_message(blocked), "exists")

		# Collaboration always needs the other side's approval.
		edge = RelationshipEdge(
			from_user_id=from_user_id,
			to_user_id=to_user_id,
			relationship_type=RelationshipType.COLLABORATING,
			status=RelationshipStatus.PENDING,
			request_message=request_message,
		)
		try:
			created = await self._relationships.create_edge(edge)
		except EdgeAlreadyExists:
			return await self._declined_existing(action, edge)

		rate_limit = await self._record(from_user_id, action, rate_limit)
		await self._notify(
			"notify_collaboration_request",
			from_user_id,
			lambda service, actor: service.create_collaboration_request_notification(
				from_user_id, to_user_id, actor.username
			),
		)
		await audit.log_relationship_event("collaborate_requested", _edge_fields(created))
		audit.inc_action(action.value, "pending")
		return RelationshipResponse(
			success=True,
			message="Collaboration request sent. Waiting for approval.",
			relationship=_summary(created),
			rate_limit=rate_limit,
		)

	async def accept_request(self, user_id: UUID, request_id: UUID) -> RelationshipResponse:
		request = await self._relationships.get_edge_by_id(request_id)
		if request is None:
			raise RelationshipNotFound()
		if request.to_user_id != user_id:
			return RelationshipResponse(success=False, message="Unauthorized to accept this request")
		if request.status is not RelationshipStatus.PENDING:
			return RelationshipResponse(success=False, message="This request is no longer pending")

		accepted = await self._relationships.update_edge_status(request_id, RelationshipStatus.ACTIVE)
		if accepted is None:
			raise RelationshipNotFound()

		if accepted.relationship_type.is_mutual:
			try:
				await self._create_mirror(accepted)
			except Exception:
				audit.inc_mirror_rollback(accepted.relationship_type.value)
				logger.exception("mirrored edge failed on accept, restoring pending request", extra={"request_id": str(request_id)})
				await self._relationships.update_edge_status(request_id, RelationshipStatus.PENDING)
				raise

		requester_id = accepted.from_user_id
		if accepted.relationship_type is RelationshipType.CONNECTED:
			await self._notify(
				"notify_connection_accepted",
				user_id,
				lambda service, actor: service.create_connection_accepted_notification(user_id, requester_id, actor.username),
			)
		elif accepted.relationship_type is RelationshipType.COLLABORATING:
			await self._notify(
				"notify_collaboration_accepted",
				user_id,
				lambda service, actor: service.create_collaboration_accepted_notification(
					user_id, requester_id, actor.username
				),
			)
		await audit.log_relationship_event("accepted", _edge_fields(accepted))
		audit.inc_action("accept", accepted.relationship_type.value)
		return RelationshipResponse(
			success=True,
			message="Request accepted successfully",
			relationship=_summary(accepted),
		)

	async def reject_request(self, user_id: UUID, request_id: UUID) -> RelationshipResponse:
		request = await self._relationships.get_edge_by_id(request_id)
		if request is None:
			raise RelationshipNotFound()
		if request.to_user_id != user_id:
			return RelationshipResponse(success=False, message="Unauthorized to reject this request")
		if request.status is not RelationshipStatus.PENDING:
			return RelationshipResponse(success=False, message="This request is no longer pending")

		rejected = await self._relationships.update_edge_status(request_id, RelationshipStatus.REJECTED)
		if rejected is None:
			raise RelationshipNotFound()
		await audit.log_relationship_event("rejected", _edge_fields(rejected))
		audit.inc_action("reject", rejected.relationship_type.value)
		return RelationshipResponse(
			success=True,
			message="Request rejected successfully",
			relationship=_summary(rejected),
		)

	async def remove_relationship(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> RelationshipResponse:
		removed = await self._relationships.delete_edge(from_user_id, to_user_id, relationship_type)

		if relationship_type is RelationshipType.FOLLOWING and removed:
			await self._adjust_follow_counters(from_user_id, to_user_id, increment=False)

		if relationship_type.is_mutual:
			await self._best_effort(
				"delete_reverse_edge",
				self._relationships.delete_edge(to_user_id, from_user_id, relationship_type),
			)

		if relationship_type is RelationshipType.CONNECTED:
			# Disconnecting also ends any follows between the pair.
			for follower_id, followed_id in ((from_user_id, to_user_id), (to_user_id, from_user_id)):
				unfollowed = await self._best_effort(
					"delete_implied_follow",
					self._relationships.delete_edge(follower_id, followed_id, RelationshipType.FOLLOWING),
				)
				if unfollowed:
					await self._adjust_follow_counters(follower_id, followed_id, increment=False)

		await audit.log_relationship_event(
			"removed",
			{"from": str(from_user_id), "to": str(to_user_id), "type": relationship_type.value},
		)
		audit.inc_action("remove", relationship_type.value)
		return RelationshipResponse(success=True, message="Relationship removed successfully")

	# ----- queries -----

	async def get_relationship_status(self, user_id: UUID, target_user_id: UUID) -> RelationshipStatusView:
		view = RelationshipStatusView()
		get_edge = self._relationships.get_edge

		following = await get_edge(user_id, target_user_id, RelationshipType.FOLLOWING)
		view.is_following = following is not None and following.status is RelationshipStatus.ACTIVE
		follower = await get_edge(target_user_id, user_id, RelationshipType.FOLLOWING)
		view.is_follower = follower is not None and follower.status is RelationshipStatus.ACTIVE

		for relationship_type in (RelationshipType.CONNECTED, RelationshipType.COLLABORATING):
			outgoing = await get_edge(user_id, target_user_id, relationship_type)
			if outgoing is not None and outgoing.status is RelationshipStatus.ACTIVE:
				if relationship_type is RelationshipType.CONNECTED:
					view.is_connected = True
				else:
					view.is_collaborating = True
			elif outgoing is not None and outgoing.status is RelationshipStatus.PENDING:
				view.has_pending = True
			incoming = await get_edge(target_user_id, user_id, relationship_type)
			if incoming is not None and incoming.status is RelationshipStatus.PENDING:
				view.has_incoming_request = True
		return view

	async def get_relationship_stats(self, user_id: UUID) -> RelationshipStats:
		user = await self._require_user(user_id)
		return RelationshipStats(
			followers_count=user.followers_count,
			following_count=user.following_count,
			connections_count=await self._relationships.count_edges(user_id, RelationshipListType.CONNECTIONS),
			collaborators_count=await self._relationships.count_edges(user_id, RelationshipListType.COLLABORATORS),
		)

	async def get_relationship_list(
		self,
		user_id: UUID,
		list_type: RelationshipListType | str,
		page: int = 1,
		limit: int = DEFAULT_PAGE_SIZE,
	) -> RelationshipListResponse:
		try:
			kind = RelationshipListType(list_type)
		except ValueError:
			raise InvalidListType(f"invalid_list_type:{list_type}") from None
		page = max(1, page)
		if limit < 1 or limit > MAX_PAGE_SIZE:
			limit = DEFAULT_PAGE_SIZE

		entries, total = await self._relationships.list_edges(
			user_id,
			kind,
			offset=(page - 1) * limit,
			limit=limit,
		)
		items: list[RelationshipListItem] = []
		for entry in entries:
			user = await self._users.get_user(entry.user_id)
			if user is None:
				logger.warning(
					"skipping relationship list entry for missing user",
					extra={"list_type": kind.value, "listed_user": str(entry.user_id)},
				)
				continue
			items.append(
				RelationshipListItem(
					id=user.id,
					username=user.username,
					display_name=user.display_name,
					profile_picture=user.profile_picture,
					is_verified=user.is_verified,
					bio=user.bio,
					followers_count=user.followers_count,
					request_id=entry.edge_id if kind is RelationshipListType.PENDING else None,
					relationship_type=entry.relationship_type if kind is RelationshipListType.PENDING else None,
				)
			)
		logger.debug(
			"relationship list fetched",
			extra={"list_type": kind.value, "returned": len(items), "total": total},
		)
		return RelationshipListResponse(success=True, items=items, total=total, page=page, limit=limit)

	async def get_rate_limit_info(self, user_id: UUID, action: ActionType) -> RateLimitStatus:
		return await self._ledger.get_status(user_id, action)

	async def get_rate_limit_overview(
		self,
		user_id: UUID,
		requested: ActionType = ActionType.FOLLOW,
	) -> RateLimitOverview:
		statuses = {action: await self._ledger.get_status(user_id, action) for action in ActionType}
		return RateLimitOverview(
			follow=statuses[ActionType.FOLLOW],
			connect=statuses[ActionType.CONNECT],
			collaborate=statuses[ActionType.COLLABORATE],
			requested=statuses[requested],
		)

	async def get_spam_status(self, user_id: UUID) -> SpamStatus:
		assessment = await self._detector.get_user_spam_status(user_id)
		return SpamStatus(
			has_flags=assessment.has_flags,
			requires_review=assessment.requires_review,
			total_flags=assessment.total_flags,
			flags=[
				SpamFlagView(
					detection_type=flag.detection_type,
					flag_count=flag.flag_count,
					last_flagged_at=flag.last_flagged_at,
					requires_review=flag.requires_review,
				)
				for flag in assessment.flags
			],
		)

	async def reset_rate_limit(self, user_id: UUID, action: ActionType) -> RateLimitStatus:
		await self._ledger.reset(user_id, action)
		return await self._ledger.get_status(user_id, action)

	# ----- helpers -----

	def _declined(
		self,
		action: ActionType,
		message: str,
		result: str,
		*,
		rate_limit: Optional[RateLimitStatus] = None,
	) -> RelationshipResponse:
		audit.inc_action(action.value, result)
		return RelationshipResponse(success=False, message=message, rate_limit=rate_limit)

	async def _admit(
		self,
		user_id: UUID,
		action: ActionType,
	) -> tuple[Optional[RateLimitStatus], Optional[RelationshipResponse]]:
		try:
			status = await self._ledger.check(user_id, action)
		except RelationshipRateLimitExceeded as exc:
			return None, self._declined(action, exc.message, "rate_limited", rate_limit=exc.status)
		try:
			await self._detector.check_and_handle_spam(user_id, action)
		except SpamDetected as exc:
			return None, self._declined(action, exc.message, "spam_review" if exc.requires_review else "spam_warning")
		return status, None

	async def _record(self, user_id: UUID, action: ActionType, status: Optional[RateLimitStatus]) -> RateLimitStatus:
		record = await self._ledger.record_action(user_id, action)
		if status is None:
			return await self._ledger.get_status(user_id, action)
		return self._ledger.describe(action, status.limit, record)

	async def _require_user(self, user_id: UUID) -> UserProfile:
		user = await self._users.get_user(user_id)
		if user is None:
			raise UserNotFound()
		return user

	async def _clear_resolved(
		self,
		from_user_id: UUID,
		to_user_id: UUID,
		relationship_type: RelationshipType,
	) -> Optional[RelationshipEdge]:
		"""Drop a rejected edge so it can be requested again; return a blocking edge otherwise."""
		existing = await self._relationships.get_edge(from_user_id, to_user_id, relationship_type)
		if existing is None:
			return None
		if existing.status is RelationshipStatus.REJECTED:
			await self._relationships.delete_edge(from_user_id, to_user_id, relationship_type)
			return None
		return existing

	async def _declined_existing(self, action: ActionType, attempted: RelationshipEdge) -> RelationshipResponse:
		existing = await self._relationships.get_edge(*attempted.key)
		message = _already_message(existing) if existing is not None else _already_message(attempted)
		return self._declined(action, message, "exists")

	async def _create_mirror(self, edge: RelationshipEdge) -> RelationshipEdge:
		mirror = edge.mirrored()
		try:
			return await self._relationships.create_edge(mirror)
		except EdgeAlreadyExists:
			existing = await self._relationships.get_edge(*mirror.key)
			if existing is None or existing.id is None:
				raise
			if existing.status is RelationshipStatus.ACTIVE:
				return existing
			activated = await self._relationships.update_edge_status(existing.id, RelationshipStatus.ACTIVE)
			if activated is None:
				raise
			return activated

	async def _adjust_follow_counters(self, follower_id: UUID, followed_id: UUID, *, increment: bool) -> None:
		if increment:
			await self._best_effort("increment_follower_count", self._users.increment_follower_count(followed_id))
			await self._best_effort("increment_following_count", self._users.increment_following_count(follower_id))
		else:
			await self._best_effort("decrement_follower_count", self._users.decrement_follower_count(followed_id))
			await self._best_effort("decrement_following_count", self._users.decrement_following_count(follower_id))

	async def _notify(self, step: str, actor_id: UUID, send) -> None:
		"""Send a notification inside the request and swallow its errors.

		Awaited rather than scheduled, so the caller's deadline also bounds the
		notification and nothing outlives the request. The edge is already
		written, so a cancellation here keeps it.
		"""
		notifications = self._notifications
		if notifications is None:
			return
		try:
			actor = await self._users.get_user(actor_id)
			if actor is None:
				return
			await send(notifications, actor)
		except Exception:
			audit.inc_side_effect_failure(step)
			logger.exception("relationship notification failed", extra={"step": step})

	async def _best_effort(self, step: str, operation: Awaitable[Any]) -> Any:
		try:
			return await operation
		except Exception:
			audit.inc_side_effect_failure(step)
			logger.exception("best-effort relationship step failed", extra={"step": step})
			return None
