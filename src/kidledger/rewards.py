"""Achievement and XP rewards, delivered on a best-effort side channel."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Deque, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import ActivityKind, RewardResult, utc_now
from .money import ZERO
from .ops import StructuredLogger

LEVEL_THRESHOLDS: Tuple[int, ...] = (0, 100, 250, 500, 1000, 2000, 4000, 8000)
MAX_LEVEL = len(LEVEL_THRESHOLDS)

ACTIVITY_XP: Dict[ActivityKind, int] = {
    ActivityKind.MODULE_START: 5,
    ActivityKind.LESSON_COMPLETE: 10,
    ActivityKind.QUIZ_ATTEMPT: 15,
    ActivityKind.MODULE_COMPLETE: 50,
    ActivityKind.SALE: 10,
}


@dataclass(frozen=True, slots=True)
class CompanyAchievement:
    name: str
    revenue_threshold: Decimal
    xp_reward: int


COMPANY_ACHIEVEMENTS: Tuple[CompanyAchievement, ...] = (
    CompanyAchievement("First Sale", Decimal("0.01"), 25),
    CompanyAchievement("Rising Entrepreneur", Decimal("500.00"), 50),
    CompanyAchievement("Business Builder", Decimal("2000.00"), 100),
    CompanyAchievement("Tycoon", Decimal("10000.00"), 250),
)


def calculate_level(total_xp: int) -> int:
    """Return the 1-based level reached with ``total_xp``."""

    for index in range(len(LEVEL_THRESHOLDS) - 1, -1, -1):
        if total_xp >= LEVEL_THRESHOLDS[index]:
            return index + 1
    return 1


def xp_for_next_level(level: int, total_xp: int) -> int:
    if level >= MAX_LEVEL:
        return 0
    return LEVEL_THRESHOLDS[level] - total_xp


def progress_percentage(level: int, total_xp: int) -> int:
    if level >= MAX_LEVEL:
        return 100
    floor = LEVEL_THRESHOLDS[level - 1]
    needed = LEVEL_THRESHOLDS[level] - floor
    progress = total_xp - floor
    return min(100, max(0, round(progress / needed * 100)))


class RewardHook(Protocol):
    def award_achievements_and_xp(self, child_id: str, activity: ActivityKind) -> RewardResult:
        ...


class AchievementTracker:
    """In-process achievement and XP ledger.

    Company achievements are checked on every activity: whatever the activity
    kind, the child's current company revenue (from ``revenue_lookup``) is
    compared with each threshold and unearned achievements are granted.

    Progress is read through :meth:`_load` and written through :meth:`_save`;
    subclasses override both to keep it somewhere durable.
    """

    def __init__(
        self,
        revenue_lookup: Callable[[str], Optional[Decimal]] | None = None,
        *,
        activity_xp: Optional[Dict[ActivityKind, int]] = None,
        achievements: Sequence[CompanyAchievement] = COMPANY_ACHIEVEMENTS,
    ) -> None:
        self._revenue_lookup = revenue_lookup
        self._activity_xp = dict(activity_xp or ACTIVITY_XP)
        self._achievements = tuple(achievements)
        self._xp: Dict[str, int] = {}
        self._earned: Dict[str, Tuple[str, ...]] = {}

    @property
    def has_revenue_lookup(self) -> bool:
        return self._revenue_lookup is not None

    def bind_revenue_lookup(self, revenue_lookup: Callable[[str], Optional[Decimal]]) -> None:
        self._revenue_lookup = revenue_lookup

    def total_xp(self, child_id: str) -> int:
        return self._load(child_id)[0]

    def level(self, child_id: str) -> int:
        return calculate_level(self.total_xp(child_id))

    def earned(self, child_id: str) -> Tuple[str, ...]:
        return self._load(child_id)[1]

    def award_achievements_and_xp(self, child_id: str, activity: ActivityKind) -> RewardResult:
        activity = ActivityKind(activity)
        total_before, earned = self._load(child_id)
        level_before = calculate_level(total_before)
        xp_earned = self._activity_xp.get(activity, 0)

        revenue = ZERO
        if self._revenue_lookup is not None:
            revenue = self._revenue_lookup(child_id) or ZERO
        new_achievements: List[str] = []
        for achievement in self._achievements:
            if achievement.name in earned or revenue < achievement.revenue_threshold:
                continue
            new_achievements.append(achievement.name)
            xp_earned += achievement.xp_reward

        total = total_before + xp_earned
        self._save(child_id, total, earned + tuple(new_achievements))
        level_after = calculate_level(total)
        leveled_up = level_after > level_before
        return RewardResult(
            xp_earned=xp_earned,
            new_achievements=tuple(new_achievements),
            leveled_up=leveled_up,
            new_level=level_after if leveled_up else None,
        )

    def _load(self, child_id: str) -> Tuple[int, Tuple[str, ...]]:
        """Return ``(total_xp, earned achievement names)`` for ``child_id``."""

        return self._xp.get(child_id, 0), self._earned.get(child_id, ())

    def _save(self, child_id: str, total_xp: int, earned: Tuple[str, ...]) -> None:
        self._xp[child_id] = total_xp
        self._earned[child_id] = earned


@dataclass(slots=True)
class RewardRequest:
    """A pending award for ``child_id`` triggered by ``activity``."""

    child_id: str
    activity: ActivityKind
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)


class RewardQueue:
    """Deliver reward requests without letting failures leak to the caller.

    Failed deliveries stay queued for the next :meth:`drain` until they have
    been tried ``max_attempts`` times, after which they are dead-lettered.
    Only the newest ``history_limit`` deliveries are kept for inspection.
    """

    def __init__(
        self,
        hook: Optional[RewardHook] = None,
        *,
        max_attempts: int = 3,
        logger: Optional[StructuredLogger] = None,
        history_limit: int = 500,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if history_limit < 0:
            raise ValueError("history_limit must not be negative")
        self.hook = hook
        self.max_attempts = max_attempts
        self._logger = logger or StructuredLogger()
        self._pending: List[RewardRequest] = []
        self._dead_letters: List[RewardRequest] = []
        self._delivered: Deque[Tuple[RewardRequest, RewardResult]] = deque(maxlen=history_limit)

    def submit(self, child_id: str, activity: ActivityKind) -> RewardRequest:
        request = RewardRequest(child_id=child_id, activity=ActivityKind(activity))
        self._pending.append(request)
        return request

    def pending(self) -> Sequence[RewardRequest]:
        return tuple(self._pending)

    def dead_letters(self) -> Sequence[RewardRequest]:
        return tuple(self._dead_letters)

    def delivered(self) -> Sequence[Tuple[RewardRequest, RewardResult]]:
        return tuple(self._delivered)

    def drain(self) -> Sequence[Tuple[RewardRequest, RewardResult]]:
        """Try every pending request once and return the successful deliveries."""

        if self.hook is None:
            return tuple()
        batch, self._pending = self._pending, []
        results: List[Tuple[RewardRequest, RewardResult]] = []
        for request in batch:
            request.attempts += 1
            try:
                result = self.hook.award_achievements_and_xp(request.child_id, request.activity)
            except Exception as exc:  # the hook is an external collaborator
                request.last_error = str(exc) or exc.__class__.__name__
                self._logger.log(
                    "reward_failed",
                    child=request.child_id,
                    activity=request.activity.value,
                    attempt=request.attempts,
                    error=request.last_error,
                )
                if request.attempts >= self.max_attempts:
                    self._dead_letters.append(request)
                else:
                    self._pending.append(request)
                continue
            results.append((request, result))
            self._delivered.append((request, result))
            if result.is_noteworthy:
                self._logger.log(
                    "reward_granted",
                    child=request.child_id,
                    activity=request.activity.value,
                    xp=result.xp_earned,
                    achievements=list(result.new_achievements),
                    leveled_up=result.leveled_up,
                )
        return tuple(results)

    def retry_dead_letters(self) -> int:
        """Move dead-lettered requests back to the queue with a fresh budget."""

        revived = len(self._dead_letters)
        for request in self._dead_letters:
            request.attempts = 0
            self._pending.append(request)
        self._dead_letters.clear()
        return revived


__all__ = [
    "ACTIVITY_XP",
    "AchievementTracker",
    "COMPANY_ACHIEVEMENTS",
    "CompanyAchievement",
    "LEVEL_THRESHOLDS",
    "RewardHook",
    "RewardQueue",
    "RewardRequest",
    "calculate_level",
    "progress_percentage",
    "xp_for_next_level",
]
