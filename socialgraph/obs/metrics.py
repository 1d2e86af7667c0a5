"""Central registry for Prometheus metrics used by the relationship core."""

from __future__ import annotations

from prometheus_client import Counter

RELATIONSHIP_ACTIONS = Counter(
	"socialgraph_relationship_actions_total",
	"Relationship actions processed by outcome",
	["action", "result"],
)

RELATIONSHIP_RATE_LIMITED = Counter(
	"socialgraph_relationship_rate_limited_total",
	"Relationship actions rejected because the quota was exhausted",
	["action"],
)

SPAM_FLAGS = Counter(
	"socialgraph_spam_flags_total",
	"Spam strikes recorded by detection type",
	["detection_type", "requires_review"],
)

COOLDOWN_PENALTIES = Counter(
	"socialgraph_cooldown_penalties_total",
	"Cooldown multipliers escalated by the spam detector",
	["action"],
)

SIDE_EFFECT_FAILURES = Counter(
	"socialgraph_side_effect_failures_total",
	"Best-effort relationship side effects that failed",
	["step"],
)

MIRROR_ROLLBACKS = Counter(
	"socialgraph_mirror_rollbacks_total",
	"Forward edges removed because the mirrored edge could not be written",
	["relationship_type"],
)


def inc_relationship_action(action: str, result: str) -> None:
	RELATIONSHIP_ACTIONS.labels(action=action, result=result).inc()


def inc_rate_limited(action: str) -> None:
	RELATIONSHIP_RATE_LIMITED.labels(action=action).inc()


def inc_spam_flag(detection_type: str, requires_review: bool) -> None:
	SPAM_FLAGS.labels(detection_type=detection_type, requires_review=str(requires_review).lower()).inc()


def inc_cooldown_penalty(action: str) -> None:
	COOLDOWN_PENALTIES.labels(action=action).inc()


def inc_side_effect_failure(step: str) -> None:
	SIDE_EFFECT_FAILURES.labels(step=step).inc()


def inc_mirror_rollback(relationship_type: str) -> None:
	MIRROR_ROLLBACKS.labels(relationship_type=relationship_type).inc()
