"""Audit helpers for relationship changes."""

from __future__ import annotations

import logging
from typing import Dict

from socialgraph.infra.redis import redis_client
from socialgraph.obs import metrics as obs_metrics
from socialgraph.settings import settings

logger = logging.getLogger(__name__)


async def log_relationship_event(event: str, fields: Dict[str, str]) -> None:
	payload = {"event": event, **fields}
	try:
		await redis_client.xadd(
			settings.relationship_audit_stream,
			payload,
			maxlen=settings.relationship_audit_maxlen,
			approximate=True,
		)
	except Exception:
		obs_metrics.inc_side_effect_failure("audit")
		logger.exception("failed to append relationship audit event", extra={"event": event})


def inc_action(action: str, result: str) -> None:
	obs_metrics.inc_relationship_action(action, result)


def inc_side_effect_failure(step: str) -> None:
	obs_metrics.inc_side_effect_failure(step)


def inc_mirror_rollback(relationship_type: str) -> None:
	obs_metrics.inc_mirror_rollback(relationship_type)
