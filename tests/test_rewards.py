from decimal import Decimal

from kidledger.exceptions import RewardHookError
from kidledger.models import ActivityKind, RewardResult
from kidledger.ops import StructuredLogger
from kidledger.rewards import (
    AchievementTracker,
    RewardQueue,
    calculate_level,
    progress_percentage,
    xp_for_next_level,
)


class FlakyHook:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def award_achievements_and_xp(self, child_id: str, activity: ActivityKind) -> RewardResult:
        self.calls += 1
        if self.calls <= self.failures:
            raise RewardHookError("try again later")
        return RewardResult(xp_earned=10)


def test_level_thresholds() -> None:
    assert calculate_level(0) == 1
    assert calculate_level(99) == 1
    assert calculate_level(100) == 2
    assert calculate_level(8000) == 8
    assert xp_for_next_level(1, 40) == 60
    assert xp_for_next_level(8, 9000) == 0
    assert progress_percentage(2, 175) == 50
    assert progress_percentage(8, 9000) == 100


def test_tracker_grants_revenue_achievements_once() -> None:
    revenue = {"kid-1": Decimal("0")}
    tracker = AchievementTracker(lambda child_id: revenue.get(child_id))

    first = tracker.award_achievements_and_xp("kid-1", ActivityKind.SALE)
    assert first.xp_earned == 10
    assert first.new_achievements == ()

    revenue["kid-1"] = Decimal("2500")
    second = tracker.award_achievements_and_xp("kid-1", ActivityKind.SALE)
    assert second.new_achievements == ("First Sale", "Rising Entrepreneur", "Business Builder")
    assert second.xp_earned == 10 + 25 + 50 + 100
    assert second.leveled_up
    assert second.new_level == 2

    third = tracker.award_achievements_and_xp("kid-1", ActivityKind.LESSON_COMPLETE)
    assert third.new_achievements == ()
    assert tracker.total_xp("kid-1") == 10 + 185 + 10
    assert tracker.earned("kid-1") == ("First Sale", "Rising Entrepreneur", "Business Builder")


def test_queue_retries_then_delivers() -> None:
    hook = FlakyHook(failures=1)
    queue = RewardQueue(hook, max_attempts=3)
    queue.submit("kid-1", ActivityKind.SALE)

    assert queue.drain() == ()
    assert len(queue.pending()) == 1

    delivered = queue.drain()
    assert len(delivered) == 1
    request, result = delivered[0]
    assert request.attempts == 2
    assert result.xp_earned == 10
    assert queue.pending() == ()


def test_queue_dead_letters_after_max_attempts() -> None:
    hook = FlakyHook(failures=10)
    logger = StructuredLogger()
    queue = RewardQueue(hook, max_attempts=2, logger=logger)
    queue.submit("kid-1", ActivityKind.SALE)

    queue.drain()
    queue.drain()

    assert queue.pending() == ()
    assert len(queue.dead_letters()) == 1
    assert queue.dead_letters()[0].last_error == "try again later"
    assert len(logger.events("reward_failed")) == 2

    assert queue.retry_dead_letters() == 1
    assert len(queue.pending()) == 1
    assert queue.dead_letters() == ()


def test_queue_without_hook_keeps_requests() -> None:
    queue = RewardQueue()
    queue.submit("kid-1", ActivityKind.SALE)
    assert queue.drain() == ()
    assert len(queue.pending()) == 1


def test_queue_keeps_only_recent_deliveries() -> None:
    queue = RewardQueue(FlakyHook(failures=0), history_limit=3)
    for index in range(5):
        queue.submit(f"kid-{index}", ActivityKind.SALE)

    assert len(queue.drain()) == 5
    assert [request.child_id for request, _ in queue.delivered()] == ["kid-2", "kid-3", "kid-4"]


def test_tracker_uses_revenue_lookup_bound_later() -> None:
    tracker = AchievementTracker()
    assert not tracker.has_revenue_lookup

    tracker.bind_revenue_lookup(lambda child_id: Decimal("600"))
    result = tracker.award_achievements_and_xp("kid-1", ActivityKind.MODULE_START)

    assert tracker.has_revenue_lookup
    assert result.new_achievements == ("First Sale", "Rising Entrepreneur")
    assert tracker.level("kid-1") == 1
