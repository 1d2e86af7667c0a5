"""Per-user, per-action quota windows sized by trust tier."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from socialgraph.domain.relationships.exceptions import RelationshipRateLimitExceeded, UserNotFound
from socialgraph.domain.relationships.models import (
	BASE_COOLDOWN_HOURS,
	ActionType,
	RateLimitRecord,
	limit_for_action,
)
from socialgraph.domain.relationships.repository import Clock, RateLimitRepository, UserDirectory, utcnow
from socialgraph.domain.relationships.schemas import RateLimitStatus
from socialgraph.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def format_retry_after(delta: timedelta) -> str:
	seconds = max(0, int(delta.total_seconds()))
	hours, remainder = divmod(seconds, 3600)
	return f"{hours} hours and {remainder // 60} minutes"


class RateLimitLedger:
	"""Sliding quota windows whose length can be stretched by a cooldown multiplier.

	A window opens with the first recorded action and lasts
	``BASE_COOLDOWN_HOURS * cooldown_multiplier``. Reads past that point report a
	full quota; the stored counter is only reset by the next ``record_action``.
	"""

	def __init__(
		self,
		repository: RateLimitRepository,
		users: UserDirectory,
		*,
		base_cooldown_hours: int = BASE_COOLDOWN_HOURS,
		clock: Clock | None = None,
	) -> None:
		self._repo = repository
		self._users = users
		self._base_hours = base_cooldown_hours
		self._clock = clock or utcnow

	async def limit_for(self, user_id: UUID, action: ActionType) -> int:
		user = await self._users.get_user(user_id)
		if user is None:
			raise UserNotFound()
		return limit_for_action(action, user.is_trusted)

	async def get_status(self, user_id: UUID, action: ActionType) -> RateLimitStatus:
		limit = await self.limit_for(user_id, action)
		record = await self._repo.get_rate_limit(user_id, action)
		return self.describe(action, limit, record)

	def describe(self, action: ActionType, limit: int, record: RateLimitRecord | None) -> RateLimitStatus:
		now = self._clock()
		if record is None:
			return RateLimitStatus(
				action=action,
				limit=limit,
				used=0,
				remaining=limit,
				resets_at=now + timedelta(hours=self._base_hours),
				cooldown_multiplier=1.0,
			)

		if record.is_expired(now, self._base_hours):
			return RateLimitStatus(
				action=action,
				limit=limit,
				used=0,
				remaining=limit,
				resets_at=now + record.window_length(self._base_hours),
				cooldown_multiplier=record.cooldown_multiplier,
			)

		return RateLimitStatus(
			action=action,
			limit=limit,
			used=record.action_count,
			remaining=max(0, limit - record.action_count),
			resets_at=record.expires_at(self._base_hours),
			cooldown_multiplier=record.cooldown_multiplier,
		)

	async def check(self, user_id: UUID, action: ActionType) -> RateLimitStatus:
		"""Return the current status, raising when no quota is left."""
		status = await self.get_status(user_id, action)
		if status.remaining <= 0:
			retry_after = format_retry_after(status.resets_at - self._clock())
			message = f"You've reached your {action.value} limit for today. Try again in {retry_after}."
			obs_metrics.inc_rate_limited(action.value)
			logger.info("relationship quota exhausted", extra={"actor": str(user_id), "action_type": action.value})
			raise RelationshipRateLimitExceeded(message, status)
		return status

	async def record_action(self, user_id: UUID, action: ActionType) -> RateLimitRecord:
		now = self._clock()
		base_hours = self._base_hours

		def _advance(record: RateLimitRecord | None) -> RateLimitRecord:
			if record is None:
				return RateLimitRecord(
					user_id=user_id,
					action_type=action,
					action_count=1,
					window_start=now,
					cooldown_multiplier=1.0,
				)
			if record.is_expired(now, base_hours):
				# A penalty only lasts for the window it was applied to.
				record.action_count = 1
				record.window_start = now
				record.cooldown_multiplier = 1.0
				return record
			record.action_count += 1
			return record

		return await self._repo.update_rate_limit(user_id, action, _advance)

	async def apply_penalty(self, user_id: UUID, action: ActionType, multiplier: float) -> RateLimitRecord:
		"""Overwrite the cooldown multiplier of the current window."""
		now = self._clock()

		def _penalise(record: RateLimitRecord | None) -> RateLimitRecord:
			if record is None:
				return RateLimitRecord(
					user_id=user_id,
					action_type=action,
					action_count=0,
					window_start=now,
					cooldown_multiplier=multiplier,
				)
			record.cooldown_multiplier = multiplier
			return record

		return await self._repo.update_rate_limit(user_id, action, _penalise)

	async def count_recent_actions(self, user_id: UUID, action: ActionType, since: datetime) -> int:
		return await self._repo.count_recent_actions(user_id, action, since)

	async def reset(self, user_id: UUID, action: ActionType) -> None:
		await self._repo.delete_rate_limit(user_id, action)
		logger.info("relationship quota reset", extra={"actor": str(user_id), "action_type": action.value})
