import logging
import typing

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from pydantic import ValidationError

from progress_backend.dynamodb.transact_utils import TransactItem, build_put_item, build_update_item
from progress_backend.models.enrollment_models import EnrollmentModel
from progress_backend.utils.base_types import EnrollmentStatus, IsoTimestamp, ModuleId, UserId

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class EnrollmentsTable:
    """
    A wrapper class to abstract DynamoDB operations for the Enrollments table.

    Table Schema:
      - PK: userId
      - SK: moduleId
    """

    def __init__(self, table_name: str) -> None:
        self.client = boto3.resource("dynamodb")
        self.table = self.client.Table(table_name)
        self.table_name = table_name

    def get_enrollment(self, user_id: UserId, module_id: ModuleId) -> typing.Optional[EnrollmentModel]:
        try:
            response = self.table.get_item(Key={"userId": user_id, "moduleId": module_id})
            item_data = response.get("Item")
            if item_data:
                return EnrollmentModel.model_validate(item_data)
            return None
        except ClientError as e:
            _LOGGER.error(f"Failed to get enrollment {user_id}/{module_id}: {e.response['Error']['Message']}")
            raise
        except ValidationError as ve:
            _LOGGER.error(f"Failed to validate enrollment {user_id}/{module_id}: {ve}", exc_info=True)
            return None

    def list_for_user(
        self,
        user_id: UserId,
        status: typing.Optional[EnrollmentStatus] = None,
    ) -> list[EnrollmentModel]:
        """
        Enrollments of one user, excluding unenrolled records.
        """
        enrollments: list[EnrollmentModel] = []
        filter_expression = Attr("unenrolledAt").not_exists()
        if status:
            filter_expression = filter_expression & Attr("status").eq(status)
        query_kwargs: dict[str, typing.Any] = {
            "KeyConditionExpression": Key("userId").eq(user_id),
            "FilterExpression": filter_expression,
        }

        try:
            while True:
                response = self.table.query(**query_kwargs)
                for item_data in response.get("Items", []):
                    try:
                        enrollments.append(EnrollmentModel.model_validate(item_data))
                    except ValidationError as ve:
                        _LOGGER.warning(f"Skipping invalid enrollment for user {user_id}: {item_data}. Error: {ve}")
                if "LastEvaluatedKey" not in response:
                    break
                query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            _LOGGER.error(f"Failed to list enrollments for user {user_id}: {e.response['Error']['Message']}")
            raise
        return enrollments

    def scan_for_module(self, module_id: ModuleId) -> list[EnrollmentModel]:
        """
        Enrollments of every user in one module, excluding unenrolled records.
        Only used by admin analytics; this is a full table scan.
        """
        enrollments: list[EnrollmentModel] = []
        scan_kwargs: dict[str, typing.Any] = {
            "FilterExpression": Attr("moduleId").eq(module_id) & Attr("unenrolledAt").not_exists(),
        }
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                for item_data in response.get("Items", []):
                    try:
                        enrollments.append(EnrollmentModel.model_validate(item_data))
                    except ValidationError as ve:
                        _LOGGER.warning(f"Skipping invalid enrollment in module {module_id}: {item_data}. Error: {ve}")
                if "LastEvaluatedKey" not in response:
                    break
                scan_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            _LOGGER.error(f"Failed to scan enrollments for module {module_id}: {e.response['Error']['Message']}")
            raise
        return enrollments

    def count_enrollments(self, user_id: UserId) -> int:
        return len(self.list_for_user(user_id))

    def count_completed_enrollments(self, user_id: UserId) -> int:
        return len(self.list_for_user(user_id, status="completed"))

    def build_create_enrollment_put(self, enrollment: EnrollmentModel) -> TransactItem:
        """
        Put of a new enrollment that fails if one already exists for (userId, moduleId).
        """
        return build_put_item(
            table_name=self.table_name,
            item=enrollment.model_dump(exclude_none=True),
            condition_expression="attribute_not_exists(moduleId)",
        )

    def update_counts(
        self,
        user_id: UserId,
        module_id: ModuleId,
        total_sections: int,
        completed_sections: int,
        progress_percentage: int,
        now: IsoTimestamp,
        expected_version: int,
    ) -> typing.Optional[EnrollmentModel]:
        """
        Writes the recomputed counts and percentage together, but only onto the version the
        counts were derived against.

        :return: The updated enrollment, or None if the enrollment is missing, unenrolled or
                 has been written since expected_version was read.
        """
        version_condition = "version = :expected"
        if expected_version == 0:
            # Records written before versioning carry no version attribute.
            version_condition = "(attribute_not_exists(version) OR version = :expected)"
        try:
            response = self.table.update_item(
                Key={"userId": user_id, "moduleId": module_id},
                UpdateExpression=(
                    "SET totalSections = :total, completedSections = :completed, "
                    "progressPercentage = :percentage, lastAccessedAt = :now, version = :next"
                ),
                ConditionExpression=(
                    f"attribute_exists(moduleId) AND attribute_not_exists(unenrolledAt) AND {version_condition}"
                ),
                ExpressionAttributeValues={
                    ":total": total_sections,
                    ":completed": completed_sections,
                    ":percentage": progress_percentage,
                    ":now": now,
                    ":expected": expected_version,
                    ":next": expected_version + 1,
                },
                ReturnValues="ALL_NEW",
            )
            return EnrollmentModel.model_validate(response["Attributes"])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.info(f"Enrollment {user_id}/{module_id} is gone or moved past version {expected_version}.")
                return None
            _LOGGER.error(f"Error updating enrollment counts {user_id}/{module_id}: {e.response['Error']['Message']}")
            raise

    def build_completion_guard(
        self,
        user_id: UserId,
        module_id: ModuleId,
        bonus_xp: int,
        now: IsoTimestamp,
    ) -> TransactItem:
        """
        Flips an active, fully progressed enrollment to completed and records the bonus.
        Only one writer can satisfy the condition.
        """
        return build_update_item(
            table_name=self.table_name,
            key={"userId": user_id, "moduleId": module_id},
            update_expression=(
                "SET #status = :completed, completedAt = :now, "
                "completionBonusAwardedAt = :now, completionBonusXp = :xp ADD version :one"
            ),
            condition_expression=(
                "#status = :active AND progressPercentage = :hundred "
                "AND attribute_not_exists(completionBonusAwardedAt) AND attribute_not_exists(unenrolledAt)"
            ),
            attribute_names={"#status": "status"},
            attribute_values={
                ":completed": "completed",
                ":active": "active",
                ":hundred": 100,
                ":now": now,
                ":xp": bonus_xp,
                ":one": 1,
            },
        )

    def transition_status(
        self,
        user_id: UserId,
        module_id: ModuleId,
        allowed_from: typing.Sequence[EnrollmentStatus],
        to_status: EnrollmentStatus,
        now: IsoTimestamp,
    ) -> typing.Optional[EnrollmentModel]:
        """
        Conditional lifecycle transition. Completing also forces progressPercentage to 100.

        :return: The updated enrollment, or None if the enrollment is missing, unenrolled or
                 not in an allowed state.
        """
        set_parts = ["#status = :to_status", "lastAccessedAt = :now"]
        values: dict[str, typing.Any] = {":to_status": to_status, ":now": now, ":one": 1}
        if to_status == "completed":
            set_parts.append("progressPercentage = :hundred")
            set_parts.append("completedAt = if_not_exists(completedAt, :now)")
            values[":hundred"] = 100

        from_placeholders = []
        for index, status in enumerate(allowed_from):
            placeholder = f":from{index}"
            from_placeholders.append(placeholder)
            values[placeholder] = status

        try:
            response = self.table.update_item(
                Key={"userId": user_id, "moduleId": module_id},
                UpdateExpression="SET " + ", ".join(set_parts) + " ADD version :one",
                ConditionExpression=(
                    "attribute_exists(moduleId) AND attribute_not_exists(unenrolledAt) "
                    f"AND #status IN ({', '.join(from_placeholders)})"
                ),
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
            _LOGGER.info(f"Enrollment {user_id}/{module_id} transitioned to {to_status}")
            return EnrollmentModel.model_validate(response["Attributes"])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.info(f"Enrollment {user_id}/{module_id} cannot move to {to_status} from its current state.")
                return None
            _LOGGER.error(f"Error transitioning enrollment {user_id}/{module_id}: {e.response['Error']['Message']}")
            raise

    def mark_unenrolled(self, user_id: UserId, module_id: ModuleId, now: IsoTimestamp) -> bool:
        """
        Hides the enrollment without deleting it; reward markers stay on the record.

        :return: True if an enrollment was unenrolled, False if there was none or it already was.
        """
        try:
            self.table.update_item(
                Key={"userId": user_id, "moduleId": module_id},
                UpdateExpression="SET unenrolledAt = :now, lastAccessedAt = :now ADD version :one",
                ConditionExpression="attribute_exists(moduleId) AND attribute_not_exists(unenrolledAt)",
                ExpressionAttributeValues={":now": now, ":one": 1},
            )
            _LOGGER.info(f"Unenrolled {user_id}/{module_id}")
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            _LOGGER.error(f"Error unenrolling {user_id}/{module_id}: {e.response['Error']['Message']}")
            raise

    def reactivate(
        self,
        user_id: UserId,
        module_id: ModuleId,
        status: EnrollmentStatus,
        now: IsoTimestamp,
        expected_version: int,
    ) -> typing.Optional[EnrollmentModel]:
        """
        Brings back an unenrolled record under a fresh enrolledAt. Reward markers are kept.

        :return: The reactivated enrollment, or None if it is not unenrolled at expected_version.
        """
        try:
            response = self.table.update_item(
                Key={"userId": user_id, "moduleId": module_id},
                UpdateExpression=(
                    "SET #status = :status, enrolledAt = :now, lastAccessedAt = :now, version = :next "
                    "REMOVE unenrolledAt"
                ),
                ConditionExpression="attribute_exists(unenrolledAt) AND version = :expected",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":status": status,
                    ":now": now,
                    ":expected": expected_version,
                    ":next": expected_version + 1,
                },
                ReturnValues="ALL_NEW",
            )
            _LOGGER.info(f"Re-enrolled {user_id}/{module_id} as {status}")
            return EnrollmentModel.model_validate(response["Attributes"])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return None
            _LOGGER.error(f"Error re-enrolling {user_id}/{module_id}: {e.response['Error']['Message']}")
            raise
