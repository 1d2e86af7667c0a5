"""Burst detection with cooldown escalation and review strikes."""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from socialgraph.domain.relationships.exceptions import SpamDetected
from socialgraph.domain.relationships.ledger import RateLimitLedger
from socialgraph.domain.relationships.models import (
	MAX_STRIKES_BEFORE_REVIEW,
	PENALTY_COOLDOWN_MULTIPLIER,
	RAPID_ACTIONS_THRESHOLD,
	RAPID_ACTIONS_WINDOW,
	ActionType,
	SpamAssessment,
	SpamFlag,
)
from socialgraph.domain.relationships.repository import Clock, SpamFlagRepository, utcnow
from socialgraph.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

REVIEW_REQUIRED_MESSAGE = (
	"Your account has been flagged for suspicious activity and requires manual review. Please contact support."
)
SLOW_DOWN_MESSAGE = (
	"Slow down! You've been detected making too many actions too quickly. Your cooldown period has been increased."
)


def rapid_detection_type(action: ActionType) -> str:
	return f"rapid_{action.value}"


class SpamDetector:
	"""Classifies bursts and penalises the acting user.

	Every write targets the acting user's own rate-limit record and spam flag,
	so concurrent checks for different users never contend.
	"""

	def __init__(
		self,
		ledger: RateLimitLedger,
		flags: SpamFlagRepository,
		*,
		threshold: int = RAPID_ACTIONS_THRESHOLD,
		window: timedelta = RAPID_ACTIONS_WINDOW,
		max_strikes: int = MAX_STRIKES_BEFORE_REVIEW,
		penalty_multiplier: float = PENALTY_COOLDOWN_MULTIPLIER,
		clock: Clock | None = None,
	) -> None:
		self._ledger = ledger
		self._flags = flags
		self._threshold = threshold
		self._window = window
		self._max_strikes = max_strikes
		self._penalty = penalty_multiplier
		self._clock = clock or utcnow

	async def detect_rapid_actions(self, user_id: UUID, action: ActionType) -> bool:
		since = self._clock() - self._window
		count = await self._ledger.count_recent_actions(user_id, action, since)
		return count > self._threshold

	async def apply_cooldown_penalty(self, user_id: UUID, action: ActionType) -> None:
		await self._ledger.apply_penalty(user_id, action, self._penalty)
		obs_metrics.inc_cooldown_penalty(action.value)

	async def flag_for_review(self, user_id: UUID, detection_type: str) -> SpamFlag:
		now = self._clock()
		max_strikes = self._max_strikes

		def _strike(flag: SpamFlag | None) -> SpamFlag:
			if flag is None:
				return SpamFlag(
					user_id=user_id,
					detection_type=detection_type,
					flag_count=1,
					last_flagged_at=now,
					requires_review=max_strikes <= 1,
				)
			flag.flag_count += 1
			flag.last_flagged_at = now
			if flag.flag_count >= max_strikes:
				flag.requires_review = True
			return flag

		flag = await self._flags.update_spam_flag(user_id, detection_type, _strike)
		obs_metrics.inc_spam_flag(detection_type, flag.requires_review)
		return flag

	async def get_user_spam_status(self, user_id: UUID) -> SpamAssessment:
		flags = await self._flags.list_spam_flags(user_id)
		return SpamAssessment(flags=list(flags))

	async def check_and_handle_spam(self, user_id: UUID, action: ActionType) -> None:
		"""Penalise a burst and raise SpamDetected describing the outcome.

		Returns None when the recent activity is within bounds.
		"""
		if not await self.detect_rapid_actions(user_id, action):
			return None

		await self.apply_cooldown_penalty(user_id, action)
		detection_type = rapid_detection_type(action)
		await self.flag_for_review(user_id, detection_type)

		assessment = await self.get_user_spam_status(user_id)
		logger.warning(
			"rapid relationship actions detected",
			extra={
				"actor": str(user_id),
				"detection_type": detection_type,
				"total_flags": assessment.total_flags,
				"requires_review": assessment.requires_review,
			},
		)
		if assessment.requires_review:
			raise SpamDetected(
				REVIEW_REQUIRED_MESSAGE,
				requires_review=True,
				flag_count=assessment.total_flags,
			)
		raise SpamDetected(
			SLOW_DOWN_MESSAGE,
			requires_review=False,
			flag_count=assessment.total_flags,
		)
