import logging
import typing

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from pydantic import ValidationError

from progress_backend.dynamodb.transact_utils import TransactItem, build_update_item
from progress_backend.models.achievement_models import UserAchievementProgressModel
from progress_backend.utils.base_types import AchievementSlug, IsoTimestamp, UserId

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

# "current" is a DynamoDB reserved word
_NAMES = {"#current": "current"}


class UserAchievementsTable:
    """
    Per-user achievement counters.

    Table Schema:
      - PK: userId
      - SK: achievementSlug
    """

    def __init__(self, table_name: str) -> None:
        self.client = boto3.resource("dynamodb")
        self.table = self.client.Table(table_name)
        self.table_name = table_name

    def get_progress(self, user_id: UserId, slug: AchievementSlug) -> typing.Optional[UserAchievementProgressModel]:
        try:
            response = self.table.get_item(Key={"userId": user_id, "achievementSlug": slug})
            item_data = response.get("Item")
            if item_data:
                return UserAchievementProgressModel.model_validate(item_data)
            return None
        except ClientError as e:
            _LOGGER.error(f"Failed to get achievement {slug} for user {user_id}: {e.response['Error']['Message']}")
            raise
        except ValidationError as ve:
            _LOGGER.error(f"Failed to validate achievement {slug} for user {user_id}: {ve}", exc_info=True)
            return None

    def _collect(self, operation: typing.Callable[..., dict], **kwargs: typing.Any) -> list[UserAchievementProgressModel]:
        results: list[UserAchievementProgressModel] = []
        while True:
            response = operation(**kwargs)
            for item_data in response.get("Items", []):
                try:
                    results.append(UserAchievementProgressModel.model_validate(item_data))
                except ValidationError as ve:
                    _LOGGER.warning(f"Skipping invalid achievement item: {item_data}. Error: {ve}")
            if "LastEvaluatedKey" not in response:
                return results
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    def list_for_user(self, user_id: UserId) -> list[UserAchievementProgressModel]:
        try:
            return self._collect(self.table.query, KeyConditionExpression=Key("userId").eq(user_id))
        except ClientError as e:
            _LOGGER.error(f"Failed to list achievements for user {user_id}: {e.response['Error']['Message']}")
            raise

    def scan_completed(self) -> list[UserAchievementProgressModel]:
        """
        Every completed achievement of every user. Feeds the leaderboard only.
        """
        try:
            return self._collect(self.table.scan, FilterExpression=Attr("isCompleted").eq(True))
        except ClientError as e:
            _LOGGER.error(f"Failed to scan completed achievements: {e.response['Error']['Message']}")
            raise

    def raise_progress(
        self,
        user_id: UserId,
        slug: AchievementSlug,
        value: int,
        target: int,
    ) -> typing.Optional[UserAchievementProgressModel]:
        """
        Sets `current` to `value` only if that raises it. Creates the item on first use.

        :return: The updated item, or None when the stored value was already >= `value`.
        """
        try:
            response = self.table.update_item(
                Key={"userId": user_id, "achievementSlug": slug},
                UpdateExpression=(
                    "SET #current = :value, target = :target, "
                    "isCompleted = if_not_exists(isCompleted, :false), earnedXp = if_not_exists(earnedXp, :zero)"
                ),
                ConditionExpression="attribute_not_exists(achievementSlug) OR #current < :value",
                ExpressionAttributeNames=_NAMES,
                ExpressionAttributeValues={":value": value, ":target": target, ":false": False, ":zero": 0},
                ReturnValues="ALL_NEW",
            )
            return UserAchievementProgressModel.model_validate(response["Attributes"])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.debug(f"Achievement {slug} for user {user_id} already at or above {value}.")
                return None
            _LOGGER.error(f"Error raising achievement {slug} for user {user_id}: {e.response['Error']['Message']}")
            raise

    def build_completion_guard(
        self,
        user_id: UserId,
        slug: AchievementSlug,
        target: int,
        reward_xp: int,
        now: IsoTimestamp,
    ) -> TransactItem:
        """
        Flips isCompleted false -> true once `current` has reached `target`.
        """
        return build_update_item(
            table_name=self.table_name,
            key={"userId": user_id, "achievementSlug": slug},
            update_expression="SET isCompleted = :true, completedAt = :now, earnedXp = :xp",
            condition_expression="#current >= :target AND isCompleted = :false",
            attribute_names=_NAMES,
            attribute_values={":true": True, ":false": False, ":now": now, ":xp": reward_xp, ":target": target},
        )
