import logging
import typing

from progress_backend.dynamodb.users_table import UsersTable
from progress_backend.models.user_stats_models import (
    StreakLeaderboardEntryModel,
    StreakRankBy,
    StreakStateModel,
    StreakStatus,
    UserStatsItemModel,
)
from progress_backend.utils.base_types import IsoDate, UserId
from progress_backend.utils.errors import ConsistencyError, InvalidInputError, ResourceNotFoundError
from progress_backend.utils.time_utils import Clock, days_between, to_iso_date, utc_now

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

MAX_TOUCH_ATTEMPTS = 5


def next_streak(current_streak: int, last_activity: typing.Optional[IsoDate], today: IsoDate) -> int:
    """
    Streak after an activity on `today`: unchanged on the same day, +1 the day after,
    otherwise restarted at 1.
    """
    if last_activity is None:
        return 1
    gap = days_between(last_activity, today)
    if gap <= 0:
        return max(current_streak, 1)
    if gap == 1:
        return current_streak + 1
    return 1


def streak_status(last_activity: typing.Optional[IsoDate], today: IsoDate) -> tuple[StreakStatus, typing.Optional[int]]:
    if last_activity is None:
        return "start", None
    gap = days_between(last_activity, today)
    if gap <= 0:
        return "active", 0
    if gap == 1:
        return "at_risk", 1
    return "broken", gap


class StreakTracker:
    def __init__(self, users_table: UsersTable, clock: Clock = utc_now):
        self.users_table = users_table
        self.clock = clock

    def _load(self, user_id: UserId) -> UserStatsItemModel:
        user = self.users_table.get_user(user_id)
        if user is None:
            raise ResourceNotFoundError("User", user_id)
        return user

    def _state(self, user: UserStatsItemModel, today: IsoDate) -> StreakStateModel:
        status, days_since = streak_status(user.lastActivityDate, today)
        return StreakStateModel(
            userId=user.userId,
            currentStreak=user.currentStreak,
            longestStreak=user.longestStreak,
            lastActivityDate=user.lastActivityDate,
            streakStatus=status,
            daysSinceLastActivity=days_since,
        )

    def touch(self, user_id: UserId) -> StreakStateModel:
        """
        Records a qualifying activity today. Safe to call any number of times per day.
        """
        for _ in range(MAX_TOUCH_ATTEMPTS):
            user = self._load(user_id)
            today = to_iso_date(self.clock())

            if user.lastActivityDate is not None and days_between(user.lastActivityDate, today) <= 0:
                return self._state(user, today)

            current = next_streak(user.currentStreak, user.lastActivityDate, today)
            longest = max(user.longestStreak, current)
            if self.users_table.write_streak(user_id, current, longest, today, user.lastActivityDate):
                updated = user.model_copy(
                    update={"currentStreak": current, "longestStreak": longest, "lastActivityDate": today}
                )
                return self._state(updated, today)

            _LOGGER.info(f"Re-reading streak for user {user_id} after a concurrent update.")

        raise ConsistencyError(f"Could not update streak for user {user_id} after {MAX_TOUCH_ATTEMPTS} attempts")

    def status(self, user_id: UserId) -> StreakStateModel:
        user = self._load(user_id)
        return self._state(user, to_iso_date(self.clock()))

    def leaderboard(self, limit: int = 10, rank_by: StreakRankBy = "current") -> list[StreakLeaderboardEntryModel]:
        if rank_by not in ("current", "longest"):
            raise InvalidInputError(f"Unknown streak ranking: {rank_by}")

        today = to_iso_date(self.clock())
        users = [u for u in self.users_table.scan_users() if u.currentStreak > 0 or u.longestStreak > 0]
        if rank_by == "current":
            users.sort(key=lambda u: (-u.currentStreak, -u.longestStreak, u.userId))
        else:
            users.sort(key=lambda u: (-u.longestStreak, -u.currentStreak, u.userId))

        return [
            StreakLeaderboardEntryModel(
                rank=rank,
                userId=user.userId,
                username=user.username,
                displayName=user.displayName,
                currentStreak=user.currentStreak,
                longestStreak=user.longestStreak,
                lastActivityDate=user.lastActivityDate,
                streakStatus=streak_status(user.lastActivityDate, today)[0],
            )
            for rank, user in enumerate(users[:limit], start=1)
        ]
