import logging
import typing

from progress_backend.dynamodb.transact_utils import TransactItem
from progress_backend.dynamodb.users_table import UsersTable
from progress_backend.models.user_stats_models import UserStatsItemModel, XpAwardResultModel, XpStatsModel
from progress_backend.policies.reward_policy import RewardPolicy
from progress_backend.utils.base_types import UserId
from progress_backend.utils.errors import InvalidInputError, ResourceNotFoundError
from progress_backend.utils.time_utils import round_half_up

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class UserStatsLedger:
    """
    The only writer of a user's XP balance. Level is derived from the balance on read.
    """

    def __init__(self, users_table: UsersTable, reward_policy: RewardPolicy):
        self.users_table = users_table
        self.reward_policy = reward_policy

    def get_user(self, user_id: UserId) -> UserStatsItemModel:
        user = self.users_table.get_user(user_id)
        if user is None:
            raise ResourceNotFoundError("User", user_id)
        return user

    def get_total_xp(self, user_id: UserId) -> int:
        return self.get_user(user_id).totalXP

    def award_xp(
        self,
        user_id: UserId,
        amount: int,
        reason: str,
        guarded_write: typing.Optional[TransactItem] = None,
    ) -> XpAwardResultModel:
        """
        Credits `amount` XP. With `guarded_write` the credit only happens if that conditional
        write succeeds in the same transaction; a failed guard means the award was already made
        (or is not due) and is reported with awarded=False.
        """
        if amount < 0:
            raise InvalidInputError(f"XP amount must not be negative (got {amount})")

        if guarded_write is None:
            new_total = self.users_table.add_xp(user_id, amount)
            if new_total is None:
                raise ResourceNotFoundError("User", user_id)
            awarded = True
        else:
            awarded = self.users_table.add_xp_with_guard(user_id, amount, guarded_write)
            new_total = self.get_total_xp(user_id)

        if awarded:
            _LOGGER.info(f"Awarded {amount} XP to user {user_id} for {reason}. Total: {new_total}")
        else:
            _LOGGER.info(f"Skipped XP award to user {user_id} for {reason}; already awarded.")

        return XpAwardResultModel(
            awarded=awarded,
            xpAwarded=amount if awarded else 0,
            totalXP=new_total,
            level=self.reward_policy.level_for_xp(new_total),
            reason=reason,
        )

    def get_stats(self, user_id: UserId) -> XpStatsModel:
        total_xp = self.get_total_xp(user_id)
        per_level = self.reward_policy.xp_per_level
        level = self.reward_policy.level_for_xp(total_xp)
        next_level_xp = level * per_level
        xp_this_level = total_xp - (level - 1) * per_level

        return XpStatsModel(
            userId=user_id,
            totalXP=total_xp,
            level=level,
            nextLevelXP=next_level_xp,
            xpToNextLevel=max(0, next_level_xp - total_xp),
            xpThisLevel=xp_this_level,
            progressToNext=min(100, round_half_up(xp_this_level / per_level * 100)),
        )
