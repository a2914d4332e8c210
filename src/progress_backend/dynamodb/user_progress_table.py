import logging
import typing

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from pydantic import ValidationError

from progress_backend.dynamodb.transact_utils import TransactItem, build_update_item
from progress_backend.models.progress_models import ProgressRecordModel
from progress_backend.utils.base_types import (
    ContentId,
    ContentType,
    IsoTimestamp,
    ModuleId,
    ProgressStatus,
    UserId,
)

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class UserProgressTable:
    """
    A wrapper class to abstract DynamoDB operations for the UserProgress table.
    One item per (userId, contentId); the key schema makes that uniqueness structural.

    Table Schema:
      - PK: userId
      - SK: contentId
    """

    def __init__(self, table_name: str) -> None:
        self.client = boto3.resource("dynamodb")
        self.table = self.client.Table(table_name)
        self.table_name = table_name

    def _validate_items(self, user_id: UserId, items: list[dict]) -> list[ProgressRecordModel]:
        records: list[ProgressRecordModel] = []
        for item_data in items:
            try:
                records.append(ProgressRecordModel.model_validate(item_data))
            except ValidationError as ve:
                _LOGGER.warning(f"Skipping invalid progress item for user {user_id}: {item_data}. Error: {ve}")
        return records

    def _query_all(self, user_id: UserId, **query_kwargs: typing.Any) -> list[dict]:
        items: list[dict] = []
        query_kwargs["KeyConditionExpression"] = Key("userId").eq(user_id)
        while True:
            response = self.table.query(**query_kwargs)
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                return items
            query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    def get_progress(self, user_id: UserId, content_id: ContentId) -> typing.Optional[ProgressRecordModel]:
        """
        :return: ProgressRecordModel if found, else None.
        """
        _LOGGER.debug(f"Fetching progress for user_id: {user_id}, content_id: {content_id}")
        try:
            response = self.table.get_item(Key={"userId": user_id, "contentId": content_id})
            item_data = response.get("Item")
            if item_data:
                return ProgressRecordModel.model_validate(item_data)
            return None
        except ClientError as e:
            _LOGGER.error(f"Failed for user_id {user_id}, content_id {content_id}: {e.response['Error']['Message']}")
            raise
        except ValidationError as ve:
            _LOGGER.error(f"Failed to validate data for user_id {user_id}, content_id {content_id}: {ve}", exc_info=True)
            return None

    def get_all_progress_for_user(self, user_id: UserId) -> list[ProgressRecordModel]:
        _LOGGER.info(f"Fetching all progress records for user_id: {user_id}")
        try:
            return self._validate_items(user_id, self._query_all(user_id))
        except ClientError as e:
            _LOGGER.error(f"Failed to query progress for user {user_id}: {e.response['Error']['Message']}")
            raise

    def get_progress_for_module(self, user_id: UserId, module_id: ModuleId) -> list[ProgressRecordModel]:
        try:
            items = self._query_all(user_id, FilterExpression=Attr("moduleId").eq(module_id))
            return self._validate_items(user_id, items)
        except ClientError as e:
            _LOGGER.error(
                f"Failed to query progress for user {user_id}, module {module_id}: {e.response['Error']['Message']}"
            )
            raise

    def scan_progress_for_module(self, module_id: ModuleId) -> list[ProgressRecordModel]:
        """
        Progress records of every user in one module. Full table scan, admin analytics only.
        """
        scan_kwargs: dict[str, typing.Any] = {"FilterExpression": Attr("moduleId").eq(module_id)}
        records: list[ProgressRecordModel] = []
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                for item_data in response.get("Items", []):
                    try:
                        records.append(ProgressRecordModel.model_validate(item_data))
                    except ValidationError as ve:
                        _LOGGER.warning(f"Skipping invalid progress item in module {module_id}: {item_data}. Error: {ve}")
                if "LastEvaluatedKey" not in response:
                    return records
                scan_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            _LOGGER.error(f"Failed to scan progress for module {module_id}: {e.response['Error']['Message']}")
            raise

    def count_completed_by_type(self, user_id: UserId, content_type: ContentType) -> int:
        """
        Absolute number of completed items of one type. Achievement counters are derived from this.
        """
        query_kwargs: dict[str, typing.Any] = {
            "KeyConditionExpression": Key("userId").eq(user_id),
            "FilterExpression": Attr("status").eq("completed") & Attr("contentType").eq(content_type),
            "Select": "COUNT",
        }
        count = 0
        try:
            while True:
                response = self.table.query(**query_kwargs)
                count += int(response.get("Count", 0))
                if "LastEvaluatedKey" not in response:
                    return count
                query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            _LOGGER.error(f"Failed to count completed {content_type} for {user_id}: {e.response['Error']['Message']}")
            raise

    def start_record(
        self,
        user_id: UserId,
        content_id: ContentId,
        module_id: ModuleId,
        content_type: ContentType,
        started_at: IsoTimestamp,
    ) -> typing.Optional[ProgressRecordModel]:
        """
        Creates the record as in-progress at 1%, or promotes an existing not-started record.

        :return: The started record, or None if the record was already in-progress or completed.
        """
        try:
            response = self.table.update_item(
                Key={"userId": user_id, "contentId": content_id},
                UpdateExpression=(
                    "SET #status = :in_progress, progressPercentage = :one, startedAt = :now, "
                    "moduleId = :module_id, contentType = :content_type, "
                    "timeSpent = if_not_exists(timeSpent, :zero)"
                ),
                ConditionExpression="attribute_not_exists(contentId) OR #status = :not_started",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":in_progress": "in-progress",
                    ":not_started": "not-started",
                    ":one": 1,
                    ":zero": 0,
                    ":now": started_at,
                    ":module_id": module_id,
                    ":content_type": content_type,
                },
                ReturnValues="ALL_NEW",
            )
            _LOGGER.info(f"Started content {content_id} for user {user_id}")
            return ProgressRecordModel.model_validate(response["Attributes"])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.info(f"Content {content_id} already started for user {user_id}.")
                return None
            _LOGGER.error(f"Error starting content {content_id} for {user_id}: {e.response['Error']['Message']}")
            raise

    def apply_percentage(
        self,
        user_id: UserId,
        content_id: ContentId,
        module_id: ModuleId,
        content_type: ContentType,
        percentage: int,
        status: ProgressStatus,
        now: IsoTimestamp,
        time_spent_delta: int = 0,
    ) -> typing.Optional[ProgressRecordModel]:
        """
        Writes a new percentage/status unless the record is already completed.
        Because completed records are excluded by the condition, a successful write whose
        status is completed is exactly the not-completed -> completed edge.

        :return: The updated record, or None if the record was already completed.
        """
        set_parts = [
            "progressPercentage = :percentage",
            "#status = :status",
            "moduleId = :module_id",
            "contentType = :content_type",
        ]
        values: dict[str, typing.Any] = {
            ":percentage": percentage,
            ":status": status,
            ":module_id": module_id,
            ":content_type": content_type,
            ":completed": "completed",
            ":delta": time_spent_delta,
        }
        if status != "not-started":
            set_parts.append("startedAt = if_not_exists(startedAt, :now)")
            values[":now"] = now
        if status == "completed":
            set_parts.append("completedAt = :now")

        try:
            response = self.table.update_item(
                Key={"userId": user_id, "contentId": content_id},
                UpdateExpression="SET " + ", ".join(set_parts) + " ADD timeSpent :delta",
                ConditionExpression="attribute_not_exists(contentId) OR #status <> :completed",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
            _LOGGER.info(f"Progress for user {user_id}, content {content_id} set to {percentage}% ({status})")
            return ProgressRecordModel.model_validate(response["Attributes"])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.info(f"Content {content_id} already completed for user {user_id}; percentage not changed.")
                return None
            _LOGGER.error(f"Error updating progress {content_id} for {user_id}: {e.response['Error']['Message']}")
            raise

    def add_time_spent(self, user_id: UserId, content_id: ContentId, time_spent_delta: int) -> None:
        try:
            self.table.update_item(
                Key={"userId": user_id, "contentId": content_id},
                UpdateExpression="ADD timeSpent :delta",
                ConditionExpression="attribute_exists(contentId)",
                ExpressionAttributeValues={":delta": time_spent_delta},
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.warning(f"No progress record to add time to for user {user_id}, content {content_id}.")
                return
            _LOGGER.error(f"Error adding time for {user_id}, {content_id}: {e.response['Error']['Message']}")
            raise

    def mark_completed(
        self,
        user_id: UserId,
        content_id: ContentId,
        module_id: ModuleId,
        content_type: ContentType,
        now: IsoTimestamp,
        score: typing.Optional[int] = None,
        max_score: typing.Optional[int] = None,
        time_spent_delta: int = 0,
    ) -> ProgressRecordModel:
        """
        Forces the record to completed/100%. The first completion timestamp is kept on retries,
        so completing twice leaves the same stored record.
        """
        set_parts = [
            "#status = :completed",
            "progressPercentage = :hundred",
            "completedAt = if_not_exists(completedAt, :now)",
            "startedAt = if_not_exists(startedAt, :now)",
            "moduleId = :module_id",
            "contentType = :content_type",
        ]
        values: dict[str, typing.Any] = {
            ":completed": "completed",
            ":hundred": 100,
            ":now": now,
            ":module_id": module_id,
            ":content_type": content_type,
            ":delta": time_spent_delta,
        }
        if score is not None:
            set_parts.append("score = :score")
            values[":score"] = score
        if max_score is not None:
            set_parts.append("maxScore = :max_score")
            values[":max_score"] = max_score

        try:
            response = self.table.update_item(
                Key={"userId": user_id, "contentId": content_id},
                UpdateExpression="SET " + ", ".join(set_parts) + " ADD timeSpent :delta",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
            _LOGGER.info(f"Marked content {content_id} completed for user {user_id}")
            return ProgressRecordModel.model_validate(response["Attributes"])
        except ClientError as e:
            _LOGGER.error(f"Error completing content {content_id} for {user_id}: {e.response['Error']['Message']}")
            raise

    def build_reward_guard(
        self,
        user_id: UserId,
        content_id: ContentId,
        xp: int,
        now: IsoTimestamp,
    ) -> TransactItem:
        """
        Conditional write recording that the content XP for this record has been paid.
        Fails if the record is not completed or was already rewarded.
        """
        return build_update_item(
            table_name=self.table_name,
            key={"userId": user_id, "contentId": content_id},
            update_expression="SET rewardedAt = :now, xpAwarded = :xp",
            condition_expression="attribute_exists(contentId) AND #status = :completed AND attribute_not_exists(rewardedAt)",
            attribute_names={"#status": "status"},
            attribute_values={":now": now, ":xp": xp, ":completed": "completed"},
        )
