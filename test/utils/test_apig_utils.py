import json
from decimal import Decimal

import pytest

from progress_backend.utils.apig_utils import (
    ErrorCode,
    create_engine_error_response,
    create_error_response,
    format_lambda_response,
    get_method,
    get_pagination_limit,
    get_path_parts,
    get_user_id_from_event,
    is_admin_event,
    parse_json_body,
    resolve_target_user_id,
)
from progress_backend.utils.base_types import UserId
from progress_backend.utils.errors import (
    ConsistencyError,
    InvalidInputError,
    PreconditionFailedError,
    ResourceNotFoundError,
)

from test_utils.authorizer import create_api_event


def test_get_method_1() -> None:
    event = {"requestContext": {"http": {"method": "PUT"}}}
    assert get_method(event) == "PUT"


def test_get_method_2() -> None:
    event = {"requestContext": {}}
    assert get_method(event) == "UNKNOWN"


def test_get_path_parts() -> None:
    event = create_api_event("u1", "GET", "/progress/content/c1/")
    assert get_path_parts(event) == ["progress", "content", "c1"]


def test_get_user_id_from_event_1() -> None:
    event = {"requestContext": {"authorizer": {"lambda": {"email": "learner@example.com", "sub": "1234"}}}}
    assert get_user_id_from_event(event) == "1234"


def test_get_user_id_from_event_2() -> None:
    event = {"requestContext": {}}
    assert get_user_id_from_event(event) is None


def test_is_admin_event() -> None:
    assert is_admin_event(create_api_event("u1", "GET", "/", role="admin")) is True
    assert is_admin_event(create_api_event("u1", "GET", "/")) is False


def test_resolve_target_user_id() -> None:
    caller = UserId("u1")
    assert resolve_target_user_id(create_api_event("u1", "GET", "/"), caller) == "u1"
    assert resolve_target_user_id(create_api_event("u1", "GET", "/", query={"userId": "u1"}), caller) == "u1"
    assert resolve_target_user_id(create_api_event("u1", "GET", "/", query={"userId": "u2"}), caller) is None

    admin_event = create_api_event("u1", "GET", "/", query={"userId": "u2"}, role="admin")
    assert resolve_target_user_id(admin_event, caller) == "u2"


@pytest.mark.parametrize(
    "query,expected",
    [(None, 10), ({"limit": "5"}, 5), ({"limit": "500"}, 100), ({"limit": "0"}, 1), ({"limit": "abc"}, 10)],
)
def test_get_pagination_limit(query, expected) -> None:
    assert get_pagination_limit(query) == expected


def test_parse_json_body() -> None:
    assert parse_json_body({"body": None}) is None
    assert parse_json_body({"body": '{"progressPercentage": 40}'}) == {"progressPercentage": 40}
    with pytest.raises(json.JSONDecodeError):
        parse_json_body({"body": "{not json"})


def test_format_lambda_response_1() -> None:
    ret = format_lambda_response(200, {"hey": "there"})
    assert ret["statusCode"] == 200
    assert len(ret["headers"]) == 4
    assert ret["headers"]["Content-Type"] == "application/json"
    assert ret["headers"]["Access-Control-Allow-Origin"] == "*"
    assert json.loads(ret["body"]) == {"hey": "there"}


def test_format_lambda_response_2() -> None:
    ret = format_lambda_response(200, {"xp": Decimal("40"), "ratio": Decimal("0.5")})
    assert json.loads(ret["body"]) == {"xp": 40, "ratio": 0.5}


def test_format_lambda_response_no_body() -> None:
    ret = format_lambda_response(204, None, event={"headers": {"origin": "https://app.example.com"}})
    assert ret["body"] is None
    assert ret["headers"]["Access-Control-Allow-Origin"] == "https://app.example.com"


def test_create_error_response() -> None:
    ret = create_error_response(ErrorCode.AUTHENTICATION_FAILED)
    assert ret["statusCode"] == 401
    assert json.loads(ret["body"]) == {"message": "User identification failed."}


@pytest.mark.parametrize(
    "error,status_code",
    [
        (InvalidInputError("bad percentage"), 400),
        (ResourceNotFoundError("Module", "m1"), 404),
        (PreconditionFailedError("Already enrolled", current_state="active"), 409),
        (ConsistencyError("lost race"), 500),
    ],
)
def test_create_engine_error_response(error, status_code) -> None:
    assert create_engine_error_response(error)["statusCode"] == status_code


def test_create_engine_error_response_carries_current_state() -> None:
    ret = create_engine_error_response(PreconditionFailedError("Cannot pause", current_state="paused"))
    assert json.loads(ret["body"]) == {"message": "Cannot pause", "details": {"currentState": "paused"}}


def test_create_engine_error_response_hides_internal_message() -> None:
    ret = create_engine_error_response(ConsistencyError("table users cancelled"))
    assert json.loads(ret["body"]) == {"message": "An unexpected error occurred."}


def test_error_codes_are_the_ones_handlers_return() -> None:
    assert sorted(code.status_code for code in ErrorCode) == [400, 401, 403, 404, 409, 500]
