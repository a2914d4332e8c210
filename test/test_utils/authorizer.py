import typing


def add_authorizer_info(event: dict, user_id: str, role: typing.Optional[str] = None) -> None:
    assert "authorizer" not in event["requestContext"]
    context = {"sub": user_id}
    if role:
        context["role"] = role
    event["requestContext"]["authorizer"] = {"lambda": context}


def create_api_event(
    user_id: typing.Optional[str],
    method: str,
    path: str,
    body: typing.Optional[str] = None,
    query: typing.Optional[dict[str, str]] = None,
    role: typing.Optional[str] = None,
) -> dict:
    """Helper to create a mock API Gateway HTTP API event."""
    event: dict[str, typing.Any] = {
        "requestContext": {"http": {"method": method, "path": path}},
        "body": body,
        "queryStringParameters": query,
    }
    if user_id:
        add_authorizer_info(event, user_id, role)
    return event
