from unittest.mock import Mock

import pytest

from progress_backend.dynamodb.users_table import UsersTable
from progress_backend.models.user_stats_models import UserStatsItemModel
from progress_backend.services.streak_tracker import MAX_TOUCH_ATTEMPTS, StreakTracker, next_streak, streak_status
from progress_backend.utils.base_types import IsoDate, UserId
from progress_backend.utils.errors import ConsistencyError, InvalidInputError, ResourceNotFoundError

from test_utils.clock import FakeClock
from test_utils.tables import LEARNER_ID

USER = UserId(LEARNER_ID)


@pytest.mark.parametrize(
    "current,last,today,expected",
    [
        (0, None, "2025-06-03", 1),
        (3, "2025-06-03", "2025-06-03", 3),
        (3, "2025-06-02", "2025-06-03", 4),
        (3, "2025-06-01", "2025-06-03", 1),
        (12, "2025-05-31", "2025-06-01", 13),
        (0, "2025-06-03", "2025-06-03", 1),
    ],
)
def test_next_streak(current, last, today, expected):
    assert next_streak(current, last, IsoDate(today)) == expected


@pytest.mark.parametrize(
    "last,expected",
    [
        (None, ("start", None)),
        ("2025-06-03", ("active", 0)),
        ("2025-06-02", ("at_risk", 1)),
        ("2025-05-30", ("broken", 4)),
    ],
)
def test_streak_status(last, expected):
    assert streak_status(last, IsoDate("2025-06-03")) == expected


@pytest.fixture
def tracker(users_table: UsersTable, clock: FakeClock) -> StreakTracker:
    return StreakTracker(users_table, clock)


def test_consecutive_days_then_gap(tracker: StreakTracker, clock: FakeClock):
    assert tracker.touch(USER).currentStreak == 1
    clock.advance(days=1)
    assert tracker.touch(USER).currentStreak == 2
    clock.advance(days=1)
    assert tracker.touch(USER).currentStreak == 3

    clock.advance(days=3)
    state = tracker.touch(USER)

    assert state.currentStreak == 1
    assert state.longestStreak == 3
    assert state.streakStatus == "active"


def test_touch_twice_same_day(tracker: StreakTracker, clock: FakeClock):
    first = tracker.touch(USER)
    clock.advance(hours=5)
    second = tracker.touch(USER)

    assert first == second
    assert second.currentStreak == 1
    assert second.lastActivityDate == "2025-06-03"


def test_status_over_time(tracker: StreakTracker, clock: FakeClock):
    assert tracker.status(USER).streakStatus == "start"

    tracker.touch(USER)
    clock.advance(days=1)
    at_risk = tracker.status(USER)
    assert at_risk.streakStatus == "at_risk"
    assert at_risk.daysSinceLastActivity == 1

    clock.advance(days=2)
    broken = tracker.status(USER)
    assert broken.streakStatus == "broken"
    assert broken.daysSinceLastActivity == 3
    # The stored value is reported until the next activity resets it.
    assert broken.currentStreak == 1


def test_unknown_user(tracker: StreakTracker):
    with pytest.raises(ResourceNotFoundError):
        tracker.touch(UserId("ghost"))
    with pytest.raises(ResourceNotFoundError):
        tracker.status(UserId("ghost"))


def test_touch_retries_after_losing_a_race(clock: FakeClock):
    users_table = Mock(spec=UsersTable)
    users_table.get_user.side_effect = [
        UserStatsItemModel(userId=USER),
        UserStatsItemModel(userId=USER, currentStreak=1, longestStreak=1, lastActivityDate="2025-06-02"),
    ]
    users_table.write_streak.side_effect = [False, True]

    state = StreakTracker(users_table, clock).touch(USER)

    assert state.currentStreak == 2
    assert users_table.write_streak.call_count == 2
    users_table.write_streak.assert_called_with(USER, 2, 2, "2025-06-03", "2025-06-02")


def test_touch_gives_up_after_repeated_races(clock: FakeClock):
    users_table = Mock(spec=UsersTable)
    users_table.get_user.return_value = UserStatsItemModel(userId=USER)
    users_table.write_streak.return_value = False

    with pytest.raises(ConsistencyError):
        StreakTracker(users_table, clock).touch(USER)
    assert users_table.write_streak.call_count == MAX_TOUCH_ATTEMPTS


def test_leaderboard(users_table: UsersTable, clock: FakeClock):
    tracker = StreakTracker(users_table, clock)
    users_table.create_user(UserId("learner-2"), username="steady")
    users_table.create_user(UserId("learner-3"), username="idle")

    for _ in range(3):
        tracker.touch(USER)
        clock.advance(days=1)
    # learner-1 now has a 3 day streak that is at risk; learner-2 starts today.
    tracker.touch(UserId("learner-2"))

    by_current = tracker.leaderboard()
    assert [(e.rank, e.userId, e.currentStreak) for e in by_current] == [(1, USER, 3), (2, "learner-2", 1)]
    assert by_current[0].streakStatus == "at_risk"
    assert by_current[1].streakStatus == "active"

    by_longest = tracker.leaderboard(limit=1, rank_by="longest")
    assert [e.userId for e in by_longest] == [USER]


def test_leaderboard_rejects_unknown_ranking(tracker: StreakTracker):
    with pytest.raises(InvalidInputError):
        tracker.leaderboard(rank_by="fastest")
