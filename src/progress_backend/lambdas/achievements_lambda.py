import json
import logging
import typing

from pydantic import ValidationError

from progress_backend.cloudwatch.metrics import MetricsManager
from progress_backend.models.achievement_models import AdvanceAchievementInputModel
from progress_backend.services.achievement_evaluator import AchievementEvaluator
from progress_backend.services.engine import ProgressEngine
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
    is_admin_event,
    parse_json_body,
    resolve_target_user_id,
)
from progress_backend.utils.aws_env_vars import get_metrics_namespace
from progress_backend.utils.base_types import AchievementSlug, UserId
from progress_backend.utils.errors import ProgressEngineError

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class AchievementsApiHandler:
    def __init__(self, evaluator: AchievementEvaluator, metrics_manager: MetricsManager):
        self.evaluator = evaluator
        self.metrics_manager = metrics_manager

    def _handle_list(self, user_id: UserId, event: dict) -> dict:
        achievements = self.evaluator.list_for_user(user_id)
        return format_lambda_response(200, achievements.model_dump(exclude_none=True), event=event)

    def _handle_leaderboard(self, event: dict) -> dict:
        limit = get_pagination_limit(get_query_string_parameters(event))
        leaderboard = self.evaluator.leaderboard(limit)
        body = {"leaderboard": [entry.model_dump(exclude_none=True) for entry in leaderboard]}
        return format_lambda_response(200, body, event=event)

    def _handle_advance(self, user_id: UserId, slug: AchievementSlug, event: dict) -> dict:
        body = parse_json_body(event)
        if body is None:
            return create_error_response(ErrorCode.VALIDATION_ERROR, "Request body is missing.", event=event)

        advance_input = AdvanceAchievementInputModel.model_validate(body)
        newly_completed = self.evaluator.advance(user_id, slug, advance_input.value)
        if newly_completed:
            self.metrics_manager.put_metric("AchievementUnlocked", 1)

        progress = next(a for a in self.evaluator.list_for_user(user_id).achievements if a.slug == slug)
        body = {"newlyCompleted": newly_completed, "achievement": progress.model_dump(exclude_none=True)}
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

        _LOGGER.info(f"AchievementsApiHandler: {http_method} {path} for user: {user_id}")

        try:
            if http_method == "GET" and path_parts == ["achievements"]:
                return self._handle_list(user_id, event)

            elif http_method == "GET" and path_parts == ["achievements", "leaderboard"]:
                return self._handle_leaderboard(event)

            elif (
                http_method == "POST"
                and len(path_parts) == 3
                and path_parts[0] == "achievements"
                and path_parts[2] == "advance"
            ):
                # Path: /achievements/{slug}/advance
                # Counters are normally advanced by completion events; the direct route is administrative.
                if not is_admin_event(event):
                    _LOGGER.warning(f"Non-admin {caller_id} attempted to advance an achievement directly")
                    return create_error_response(ErrorCode.AUTHORIZATION_FAILED, event=event)
                return self._handle_advance(user_id, AchievementSlug(path_parts[1]), event)

            _LOGGER.warning(f"Unsupported path or method for Achievements: {http_method} {path}")
            return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)

        except ValidationError as e:
            _LOGGER.error(f"Achievement request body validation error: {e.errors()}")
            return create_error_response(
                ErrorCode.VALIDATION_ERROR,
                details=e.errors(include_url=False, include_context=False),
                event=event,
            )
        except json.JSONDecodeError:
            _LOGGER.error("Achievement request body is not valid JSON.", exc_info=True)
            return create_error_response(ErrorCode.VALIDATION_ERROR, "Request body is not valid JSON.", event=event)
        except ProgressEngineError as e:
            _LOGGER.warning(f"Achievement request for user {user_id} rejected: {e.message}")
            return create_engine_error_response(e, event=event)
        except Exception as e:
            _LOGGER.error(f"Unexpected error in AchievementsApiHandler for user {user_id}: {str(e)}", exc_info=True)
            return create_error_response(ErrorCode.INTERNAL_ERROR, event=event)


def achievements_lambda_handler(event: dict[str, typing.Any], context: typing.Any) -> dict[str, typing.Any]:
    _LOGGER.debug("Global achievements_lambda_handler received event.")
    metrics_manager = MetricsManager(get_metrics_namespace())
    metrics_manager.set_dimension("Handler", "Achievements")

    try:
        engine = ProgressEngine.from_env()
        api_handler = AchievementsApiHandler(evaluator=engine.evaluator, metrics_manager=metrics_manager)
        return api_handler.handle(event)

    except ValueError as ve:
        _LOGGER.critical(f"Configuration error in achievements_lambda_handler: {str(ve)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR, "Server configuration error")
    except Exception as e:
        _LOGGER.critical(f"Error during AchievementsApiHandler setup: {str(e)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR)
    finally:
        metrics_manager.flush()
