"""Print a user's relationship quotas and spam strikes.

Used by support staff during manual review. ``--reset`` clears the quota
window for one action type before printing.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from uuid import UUID

from socialgraph import container, obs
from socialgraph.domain.relationships.models import ActionType
from socialgraph.infra.postgres import close_pool


def _parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Inspect relationship rate limits for a user")
	parser.add_argument("user_id", type=UUID, help="User id to inspect")
	parser.add_argument(
		"--reset",
		choices=[action.value for action in ActionType],
		help="Clear the quota window for this action first",
	)
	return parser.parse_args()


async def inspect_user(user_id: UUID, reset: str | None) -> None:
	service = await container.init_postgres()
	try:
		if reset:
			await service.reset_rate_limit(user_id, ActionType(reset))
			print(f"Reset {reset} quota for {user_id}")
		overview = await service.get_rate_limit_overview(user_id)
		spam = await service.get_spam_status(user_id)
	finally:
		await close_pool()
	report = {
		"user_id": str(user_id),
		"rate_limits": overview.model_dump(mode="json", exclude={"requested"}),
		"spam": spam.model_dump(mode="json"),
	}
	print(json.dumps(report, indent=2))


def main() -> None:
	args = _parse_args()
	obs.init()
	asyncio.run(inspect_user(args.user_id, args.reset))


if __name__ == "__main__":
	main()
