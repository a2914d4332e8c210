import logging
import typing

from progress_backend.cloudwatch.metrics import MetricsManager
from progress_backend.services.engine import ProgressEngine
from progress_backend.services.streak_tracker import StreakTracker
from progress_backend.utils.apig_utils import (
    ErrorCode,
    create_engine_error_response,
    create_error_response,
    format_lambda_response,
    get_method,
    get_pagination_limit,
    get_path,
    get_path_parts,
    get_query_string_parameters,
    get_user_id_from_event,
    resolve_target_user_id,
)
from progress_backend.utils.aws_env_vars import get_metrics_namespace
from progress_backend.utils.errors import ProgressEngineError

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class StreakApiHandler:
    def __init__(self, streak_tracker: StreakTracker, metrics_manager: MetricsManager):
        self.streak_tracker = streak_tracker
        self.metrics_manager = metrics_manager

    def _handle_leaderboard(self, event: dict) -> dict:
        query_params = get_query_string_parameters(event)
        rank_by = query_params.get("rankBy", "current")
        if rank_by not in ("current", "longest"):
            return create_error_response(
                ErrorCode.VALIDATION_ERROR, "rankBy must be 'current' or 'longest'.", event=event
            )

        leaderboard = self.streak_tracker.leaderboard(get_pagination_limit(query_params), rank_by)
        body = {"rankBy": rank_by, "leaderboard": [entry.model_dump(exclude_none=True) for entry in leaderboard]}
        return format_lambda_response(200, body, event=event)

    def handle(self, event: dict) -> dict:
        caller_id = get_user_id_from_event(event)
        if not caller_id:
            return create_error_response(ErrorCode.AUTHENTICATION_FAILED, event=event)

        user_id = resolve_target_user_id(event, caller_id)
        if not user_id:
            return create_error_response(ErrorCode.AUTHORIZATION_FAILED, event=event)

        http_method = get_method(event).upper()
        path = get_path(event)
        path_parts = get_path_parts(event)

        _LOGGER.info(f"StreakApiHandler: {http_method} {path} for user: {user_id}")

        try:
            if path_parts == ["streak"]:
                if http_method == "GET":
                    state = self.streak_tracker.status(user_id)
                    return format_lambda_response(200, state.model_dump(exclude_none=True), event=event)
                elif http_method == "POST":
                    state = self.streak_tracker.touch(user_id)
                    return format_lambda_response(200, state.model_dump(exclude_none=True), event=event)

            elif http_method == "GET" and path_parts == ["streak", "leaderboard"]:
                return self._handle_leaderboard(event)

            _LOGGER.warning(f"Unsupported path or method for Streak: {http_method} {path}")
            return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)

        except ProgressEngineError as e:
            _LOGGER.warning(f"Streak request for user {user_id} rejected: {e.message}")
            return create_engine_error_response(e, event=event)
        except Exception as e:
            _LOGGER.error(f"Unexpected error in StreakApiHandler for user {user_id}: {str(e)}", exc_info=True)
            return create_error_response(ErrorCode.INTERNAL_ERROR, event=event)


def streak_lambda_handler(event: dict[str, typing.Any], context: typing.Any) -> dict[str, typing.Any]:
    _LOGGER.debug("Global streak_lambda_handler received event.")
    metrics_manager = MetricsManager(get_metrics_namespace())
    metrics_manager.set_dimension("Handler", "Streak")

    try:
        engine = ProgressEngine.from_env()
        api_handler = StreakApiHandler(streak_tracker=engine.streak_tracker, metrics_manager=metrics_manager)
        return api_handler.handle(event)

    except ValueError as ve:
        _LOGGER.critical(f"Configuration error in streak_lambda_handler: {str(ve)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR, "Server configuration error")
    except Exception as e:
        _LOGGER.critical(f"Error during StreakApiHandler setup: {str(e)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR)
    finally:
        metrics_manager.flush()
