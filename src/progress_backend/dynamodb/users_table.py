import logging
import typing

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError

from progress_backend.dynamodb.transact_utils import (
    TransactItem,
    build_update_item,
    get_cancellation_codes,
    is_transaction_cancelled,
)
from progress_backend.models.user_stats_models import UserStatsItemModel
from progress_backend.utils.base_types import IsoDate, UserId
from progress_backend.utils.errors import ConsistencyError, ResourceNotFoundError

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class UsersTable:
    """
    Data Abstraction Layer for the XP and streak attributes of the Users table.
    User items are created by the authentication service; this class never creates
    a user implicitly, every write is conditioned on the item already existing.

    Table Schema:
      - PK: userId
    """

    def __init__(self, table_name: str) -> None:
        self.client = boto3.resource("dynamodb")
        self.table = self.client.Table(table_name)
        self.table_name = table_name

    def get_user(self, user_id: UserId) -> typing.Optional[UserStatsItemModel]:
        _LOGGER.debug(f"Fetching user stats for user_id: {user_id}")
        try:
            response = self.table.get_item(Key={"userId": user_id})
            item_data = response.get("Item")
            if item_data:
                return UserStatsItemModel.model_validate(item_data)
            _LOGGER.debug(f"No user found for user_id: {user_id}")
            return None
        except ClientError as e:
            _LOGGER.error(f"Failed to get user {user_id}: {e.response['Error']['Message']}")
            raise
        except ValidationError as ve:
            _LOGGER.error(f"Failed to validate user data for user_id {user_id}: {ve}", exc_info=True)
            return None

    def create_user(
        self,
        user_id: UserId,
        username: typing.Optional[str] = None,
        display_name: typing.Optional[str] = None,
    ) -> bool:
        """
        Registers a user with zeroed stats. Used by seeding and by the authentication
        service's first-login hook. Returns False if the user already exists.
        """
        item = UserStatsItemModel(userId=user_id, username=username, displayName=display_name)
        try:
            self.table.put_item(
                Item=item.model_dump(exclude_none=True),
                ConditionExpression="attribute_not_exists(userId)",
            )
            _LOGGER.info(f"Created user item for user_id: {user_id}")
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.info(f"User {user_id} already exists. Skipping create.")
                return False
            _LOGGER.error(f"Error creating user {user_id}: {e.response['Error']['Message']}")
            raise

    def add_xp(self, user_id: UserId, amount: int) -> typing.Optional[int]:
        """
        Atomically adds XP to the user's balance.

        :return: The new total, or None if the user does not exist.
        """
        try:
            response = self.table.update_item(
                Key={"userId": user_id},
                UpdateExpression="ADD totalXP :amount",
                ConditionExpression="attribute_exists(userId)",
                ExpressionAttributeValues={":amount": amount},
                ReturnValues="UPDATED_NEW",
            )
            new_total = int(response["Attributes"]["totalXP"])
            _LOGGER.info(f"Added {amount} XP to user {user_id}. New total: {new_total}")
            return new_total
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.warning(f"Cannot add XP, user {user_id} does not exist.")
                return None
            _LOGGER.error(f"Error adding XP for user {user_id}: {e.response['Error']['Message']}")
            raise

    def build_add_xp_update(self, user_id: UserId, amount: int) -> TransactItem:
        return build_update_item(
            table_name=self.table_name,
            key={"userId": user_id},
            update_expression="ADD totalXP :amount",
            condition_expression="attribute_exists(userId)",
            attribute_values={":amount": amount},
        )

    def add_xp_with_guard(self, user_id: UserId, amount: int, guarded_write: TransactItem) -> bool:
        """
        Commits `guarded_write` and the XP credit as one transaction.
        The guard is a conditional write that records the award on the owning entity,
        so a second caller for the same award fails the guard and nothing is credited.

        :return: True if this call won the guard and the XP was credited, False if the guard failed.
        :raises ResourceNotFoundError: If the user does not exist.
        :raises ConsistencyError: If the transaction was cancelled for any other reason.
        """
        try:
            self.table.meta.client.transact_write_items(
                TransactItems=[guarded_write, self.build_add_xp_update(user_id, amount)]
            )
            _LOGGER.info(f"Guarded award of {amount} XP committed for user {user_id}")
            return True
        except ClientError as e:
            if not is_transaction_cancelled(e):
                _LOGGER.error(f"Error in guarded XP award for user {user_id}: {e.response['Error']['Message']}")
                raise

            codes = get_cancellation_codes(e)
            if not codes or codes[0] == "ConditionalCheckFailed":
                _LOGGER.info(f"Guard not satisfied for user {user_id}; award already made or not applicable.")
                return False
            if len(codes) > 1 and codes[1] == "ConditionalCheckFailed":
                raise ResourceNotFoundError("User", user_id) from e

            _LOGGER.error(f"Guarded XP award for user {user_id} cancelled with reasons {codes}")
            raise ConsistencyError(f"Guarded XP award cancelled for user {user_id}: {codes}") from e

    def write_streak(
        self,
        user_id: UserId,
        current_streak: int,
        longest_streak: int,
        activity_date: IsoDate,
        previous_activity_date: typing.Optional[IsoDate],
    ) -> bool:
        """
        Optimistic write of the streak attributes: succeeds only if lastActivityDate is still
        what the caller read. Returns False when another request got there first.
        """
        if previous_activity_date is None:
            condition = "attribute_exists(userId) AND attribute_not_exists(lastActivityDate)"
            values: dict[str, typing.Any] = {}
        else:
            condition = "attribute_exists(userId) AND lastActivityDate = :previous"
            values = {":previous": previous_activity_date}

        values.update({":current": current_streak, ":longest": longest_streak, ":date": activity_date})
        try:
            self.table.update_item(
                Key={"userId": user_id},
                UpdateExpression="SET currentStreak = :current, longestStreak = :longest, lastActivityDate = :date",
                ConditionExpression=condition,
                ExpressionAttributeValues=values,
            )
            _LOGGER.info(f"Streak for user {user_id} set to {current_streak} (longest {longest_streak})")
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.info(f"Streak write for user {user_id} lost to a concurrent update.")
                return False
            _LOGGER.error(f"Error writing streak for user {user_id}: {e.response['Error']['Message']}")
            raise

    def scan_users(self) -> list[UserStatsItemModel]:
        """
        Reads every user item. Leaderboards only; the table is expected to be small.
        """
        users: list[UserStatsItemModel] = []
        scan_kwargs: dict[str, typing.Any] = {}
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                for item_data in response.get("Items", []):
                    try:
                        users.append(UserStatsItemModel.model_validate(item_data))
                    except ValidationError as ve:
                        _LOGGER.warning(f"Skipping invalid user item: {item_data}. Error: {ve}")
                if "LastEvaluatedKey" not in response:
                    break
                scan_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            _LOGGER.error(f"Failed to scan users: {e.response['Error']['Message']}")
            raise
        return users
