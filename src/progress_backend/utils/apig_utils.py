import enum
import json
import logging
import typing
from decimal import Decimal

from progress_backend.utils.base_types import UserId
from progress_backend.utils.errors import (
    InvalidInputError,
    PreconditionFailedError,
    ProgressEngineError,
    ResourceNotFoundError,
)

_LOGGER = logging.getLogger(__name__)


QueryParams = typing.NewType("QueryParams", dict[str, str])


class ErrorCode(enum.Enum):
    AUTHENTICATION_FAILED = (401, "User identification failed.")
    AUTHORIZATION_FAILED = (403, "Not authorized to perform this action.")
    RESOURCE_NOT_FOUND = (404, "Resource not found or method not allowed.")
    VALIDATION_ERROR = (400, "Invalid request.")
    PRECONDITION_FAILED = (409, "Request conflicts with the current state.")
    INTERNAL_ERROR = (500, "An unexpected error occurred.")

    @property
    def status_code(self) -> int:
        return self.value[0]

    @property
    def default_message(self) -> str:
        return self.value[1]


def get_method(event: dict) -> str:
    return event.get("requestContext", {}).get("http", {}).get("method", "UNKNOWN")


def get_path(event: dict) -> str:
    return event.get("requestContext", {}).get("http", {}).get("path", "")


def get_path_parts(event: dict) -> list[str]:
    return [part for part in get_path(event).strip("/").split("/") if part]


def get_query_string_parameters(event: dict) -> QueryParams:
    return QueryParams(event.get("queryStringParameters") or {})


def get_pagination_limit(query_params: typing.Optional[QueryParams], default: int = 10, maximum: int = 100) -> int:
    limit = default
    if query_params and "limit" in query_params:
        try:
            limit = int(query_params["limit"])
        except (ValueError, TypeError):
            _LOGGER.warning(f"Invalid limit query param: {query_params.get('limit')}")
    return max(1, min(limit, maximum))


def _get_authorizer_context(event: dict[str, typing.Any]) -> dict[str, typing.Any]:
    return event.get("requestContext", {}).get("authorizer", {}).get("lambda", {}) or {}


def get_user_id_from_event(event: dict[str, typing.Any]) -> typing.Optional[UserId]:
    """
    Extracts user ID from the Lambda event context provided by the custom Lambda Authorizer.
    The authorizer places the decoded JWT payload into the 'lambda' key.
    """
    try:
        user_id = _get_authorizer_context(event).get("sub")
        if user_id:
            return UserId(str(user_id))

        _LOGGER.warning("User ID ('sub') not found in authorizer's lambda context.")
        return None
    except Exception as e:
        _LOGGER.error("Error extracting user_id from event: %s", str(e))
        return None


def is_admin_event(event: dict[str, typing.Any]) -> bool:
    return _get_authorizer_context(event).get("role") == "admin"


def resolve_target_user_id(event: dict[str, typing.Any], caller_id: UserId) -> typing.Optional[UserId]:
    """
    Acting user is the caller unless an admin supplies ?userId=... to act on someone else.
    Returns None when a non-admin attempts the override.
    """
    requested = get_query_string_parameters(event).get("userId")
    if not requested or requested == caller_id:
        return caller_id
    if is_admin_event(event):
        _LOGGER.info(f"Admin {caller_id} acting on behalf of user {requested}")
        return UserId(requested)
    _LOGGER.warning(f"User {caller_id} attempted to act on behalf of {requested} without admin role")
    return None


def parse_json_body(event: dict[str, typing.Any]) -> typing.Optional[dict[str, typing.Any]]:
    """
    Returns the decoded JSON body, or None when there is no body.
    :raises json.JSONDecodeError: If the body is not valid JSON.
    """
    raw_body = event.get("body")
    if not raw_body:
        return None
    return json.loads(raw_body)


def _json_default(value: typing.Any) -> typing.Any:
    # DynamoDB hands numbers back as Decimal
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def format_lambda_response(
    status_code: int,
    body: typing.Any,
    *,
    event: typing.Optional[dict[str, typing.Any]] = None,
    additional_headers: typing.Optional[dict[str, str]] = None,
) -> dict[str, typing.Any]:
    """
    Formats API Gateway proxy responses with CORS headers.
    """
    allowed_origin = event.get("headers", {}).get("origin", "*") if event else "*"

    headers = {
        "Content-Type": "application/json",
        "Access-Control-Allow-Origin": allowed_origin or "*",
        "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Amz-Date,X-Api-Key,X-Amz-Security-Token",
        "Access-Control-Allow-Methods": "OPTIONS,GET,PUT,POST,DELETE",
    }
    if additional_headers:
        headers.update(additional_headers)

    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body, default=_json_default) if body is not None else None,
    }


def create_error_response(
    error_code: ErrorCode,
    message: typing.Optional[str] = None,
    *,
    details: typing.Any = None,
    event: typing.Optional[dict[str, typing.Any]] = None,
) -> dict[str, typing.Any]:
    body: dict[str, typing.Any] = {"message": message or error_code.default_message}
    if details is not None:
        body["details"] = details
    return format_lambda_response(error_code.status_code, body, event=event)


def create_engine_error_response(
    error: ProgressEngineError,
    *,
    event: typing.Optional[dict[str, typing.Any]] = None,
) -> dict[str, typing.Any]:
    """
    Maps the engine's domain errors onto API responses. Precondition failures carry the
    current state so clients can show it ("already enrolled") instead of a failure.
    """
    if isinstance(error, InvalidInputError):
        return create_error_response(ErrorCode.VALIDATION_ERROR, error.message, event=event)
    if isinstance(error, ResourceNotFoundError):
        return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, error.message, event=event)
    if isinstance(error, PreconditionFailedError):
        details = {"currentState": error.current_state} if error.current_state else None
        return create_error_response(ErrorCode.PRECONDITION_FAILED, error.message, details=details, event=event)
    return create_error_response(ErrorCode.INTERNAL_ERROR, event=event)
