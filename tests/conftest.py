import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure the package is importable when tests run from the repo root
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
	sys.path.insert(0, str(PROJECT_ROOT))

from socialgraph.container import build_relationship_service
from socialgraph.domain.relationships.models import ProfilePrivacy, UserProfile
from socialgraph.domain.relationships.repository import InMemoryRelationshipStore, InMemoryUserDirectory
from socialgraph.infra import postgres


if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		pass


class FrozenClock:
	"""Manually advanced UTC clock."""

	def __init__(self, start: datetime | None = None) -> None:
		self.now = start or datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **kwargs) -> datetime:
		self.now += timedelta(**kwargs)
		return self.now


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from socialgraph.infra.redis import redis_client, set_redis_client

	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture
def clock():
	return FrozenClock()


@pytest.fixture
def store(clock):
	return InMemoryRelationshipStore(clock=clock)


@pytest.fixture
def users():
	return InMemoryUserDirectory()


@pytest.fixture
def make_user(users):
	def _make(
		username: str | None = None,
		*,
		privacy: ProfilePrivacy = ProfilePrivacy.PUBLIC,
		verified: bool = False,
		email_verified: bool = False,
	) -> UserProfile:
		user_id = uuid4()
		return users.add(
			UserProfile(
				id=user_id,
				username=username or f"user_{user_id.hex[:8]}",
				display_name=(username or "someone").title(),
				profile_privacy=privacy,
				is_verified=verified,
				is_email_verified=email_verified,
			)
		)

	return _make


@pytest.fixture
def service(store, users, clock):
	return build_relationship_service(
		relationships=store,
		rate_limits=store,
		spam_flags=store,
		users=users,
		clock=clock,
	)
