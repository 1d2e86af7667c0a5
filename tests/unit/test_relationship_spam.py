from uuid import uuid4

import pytest

from socialgraph.domain.relationships.exceptions import SpamDetected
from socialgraph.domain.relationships.ledger import RateLimitLedger
from socialgraph.domain.relationships.models import (
    ActionType,
    RelationshipEdge,
    RelationshipStatus,
    RelationshipType,
)
from socialgraph.domain.relationships.spam import (
    REVIEW_REQUIRED_MESSAGE,
    SLOW_DOWN_MESSAGE,
    SpamDetector,
    rapid_detection_type,
)


@pytest.fixture
def detector(store, users, clock):
    ledger = RateLimitLedger(store, users, clock=clock)
    return SpamDetector(ledger, store, clock=clock)


async def _seed_follows(store, user_id, count):
    for _ in range(count):
        await store.create_edge(
            RelationshipEdge(
                from_user_id=user_id,
                to_user_id=uuid4(),
                relationship_type=RelationshipType.FOLLOWING,
                status=RelationshipStatus.ACTIVE,
            )
        )


@pytest.mark.asyncio
async def test_ten_recent_actions_are_not_a_burst(detector, store, make_user):
    user = make_user()
    await _seed_follows(store, user.id, 10)
    assert not await detector.detect_rapid_actions(user.id, ActionType.FOLLOW)
    assert await detector.check_and_handle_spam(user.id, ActionType.FOLLOW) is None
    assert store.spam_flags == {}


@pytest.mark.asyncio
async def test_old_actions_fall_out_of_the_window(detector, store, make_user, clock):
    user = make_user()
    await _seed_follows(store, user.id, 11)
    clock.advance(minutes=6)
    assert not await detector.detect_rapid_actions(user.id, ActionType.FOLLOW)


@pytest.mark.asyncio
async def test_burst_is_scoped_to_the_action_type(detector, store, make_user):
    user = make_user()
    await _seed_follows(store, user.id, 11)
    assert await detector.detect_rapid_actions(user.id, ActionType.FOLLOW)
    assert not await detector.detect_rapid_actions(user.id, ActionType.CONNECT)


@pytest.mark.asyncio
async def test_burst_doubles_cooldown_and_strikes(detector, store, make_user):
    user = make_user()
    await _seed_follows(store, user.id, 11)

    with pytest.raises(SpamDetected) as exc_info:
        await detector.check_and_handle_spam(user.id, ActionType.FOLLOW)

    assert exc_info.value.message == SLOW_DOWN_MESSAGE
    assert not exc_info.value.requires_review
    assert exc_info.value.flag_count == 1
    record = store.rate_limits[(user.id, ActionType.FOLLOW)]
    assert record.cooldown_multiplier == 2.0
    flag = store.spam_flags[(user.id, rapid_detection_type(ActionType.FOLLOW))]
    assert flag.detection_type == "rapid_follow"
    assert flag.flag_count == 1


@pytest.mark.asyncio
async def test_third_strike_requires_review_and_it_sticks(detector, store, make_user, clock):
    user = make_user()
    await _seed_follows(store, user.id, 11)

    for _ in range(2):
        with pytest.raises(SpamDetected) as exc_info:
            await detector.check_and_handle_spam(user.id, ActionType.FOLLOW)
        assert not exc_info.value.requires_review

    with pytest.raises(SpamDetected) as exc_info:
        await detector.check_and_handle_spam(user.id, ActionType.FOLLOW)
    assert exc_info.value.requires_review
    assert exc_info.value.message == REVIEW_REQUIRED_MESSAGE
    assert exc_info.value.flag_count == 3

    clock.advance(hours=1)
    assert await detector.check_and_handle_spam(user.id, ActionType.FOLLOW) is None
    assessment = await detector.get_user_spam_status(user.id)
    assert assessment.requires_review
    assert assessment.total_flags == 3


@pytest.mark.asyncio
async def test_flags_accumulate_across_detection_types(detector, make_user):
    user = make_user()
    await detector.flag_for_review(user.id, "rapid_follow")
    await detector.flag_for_review(user.id, "rapid_connect")
    assessment = await detector.get_user_spam_status(user.id)
    assert assessment.has_flags
    assert assessment.total_flags == 2
    assert not assessment.requires_review
