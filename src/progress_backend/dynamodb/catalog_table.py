import logging
import typing

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from pydantic import ValidationError

from progress_backend.models.catalog_models import ContentItemModel, ModuleModel
from progress_backend.utils.base_types import ContentId, ModuleId

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

MODULE_CONTENT_INDEX = "ModuleContentIndex"


class CatalogTable:
    """
    Read interface to the catalog owned by the catalog service.

    Table Schemas:
      - CatalogModules: PK moduleId
      - CatalogContent: PK contentId, GSI ModuleContentIndex (PK moduleId)

    The save_* methods exist for seeding environments and tests; the engine itself never writes here.
    """

    def __init__(self, modules_table_name: str, content_table_name: str) -> None:
        self.client = boto3.resource("dynamodb")
        self.modules_table = self.client.Table(modules_table_name)
        self.content_table = self.client.Table(content_table_name)

    def get_module(self, module_id: ModuleId) -> typing.Optional[ModuleModel]:
        try:
            response = self.modules_table.get_item(Key={"moduleId": module_id})
            item_data = response.get("Item")
            if item_data:
                return ModuleModel.model_validate(item_data)
            return None
        except ClientError as e:
            _LOGGER.error(f"Failed to get module {module_id}: {e.response['Error']['Message']}")
            raise
        except ValidationError as ve:
            _LOGGER.error(f"Failed to validate module {module_id}: {ve}", exc_info=True)
            return None

    def get_content_item(self, content_id: ContentId) -> typing.Optional[ContentItemModel]:
        try:
            response = self.content_table.get_item(Key={"contentId": content_id})
            item_data = response.get("Item")
            if item_data:
                return ContentItemModel.model_validate(item_data)
            return None
        except ClientError as e:
            _LOGGER.error(f"Failed to get content item {content_id}: {e.response['Error']['Message']}")
            raise
        except ValidationError as ve:
            _LOGGER.error(f"Failed to validate content item {content_id}: {ve}", exc_info=True)
            return None

    def list_active_items(self, module_id: ModuleId) -> list[ContentItemModel]:
        """
        Active content items of a module, in catalog order.
        """
        items: list[ContentItemModel] = []
        query_kwargs: dict[str, typing.Any] = {
            "IndexName": MODULE_CONTENT_INDEX,
            "KeyConditionExpression": Key("moduleId").eq(module_id),
            "FilterExpression": Attr("isActive").eq(True),
        }
        try:
            while True:
                response = self.content_table.query(**query_kwargs)
                for item_data in response.get("Items", []):
                    try:
                        items.append(ContentItemModel.model_validate(item_data))
                    except ValidationError as ve:
                        _LOGGER.warning(f"Skipping invalid content item in module {module_id}: {item_data}. Error: {ve}")
                if "LastEvaluatedKey" not in response:
                    break
                query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            _LOGGER.error(f"Failed to list items of module {module_id}: {e.response['Error']['Message']}")
            raise

        items.sort(key=lambda item: (item.order, item.contentId))
        return items

    def count_active_items(self, module_id: ModuleId) -> int:
        return len(self.list_active_items(module_id))

    def save_module(self, module: ModuleModel) -> None:
        try:
            self.modules_table.put_item(Item=module.model_dump(exclude_none=True))
        except ClientError as e:
            _LOGGER.error(f"Failed to save module {module.moduleId}: {e.response['Error']['Message']}")
            raise

    def save_content_item(self, item: ContentItemModel) -> None:
        try:
            self.content_table.put_item(Item=item.model_dump(exclude_none=True))
        except ClientError as e:
            _LOGGER.error(f"Failed to save content item {item.contentId}: {e.response['Error']['Message']}")
            raise
