import json
import logging
import typing

from pydantic import ValidationError

from progress_backend.cloudwatch.metrics import MetricsManager
from progress_backend.models.progress_models import (
    CompleteContentInputModel,
    ProgressRecordResponseModel,
    UpdateProgressInputModel,
)
from progress_backend.services.engine import ProgressEngine
from progress_backend.services.progress_projections import ProgressProjections
from progress_backend.services.progress_tracker import ProgressTracker
from progress_backend.utils.apig_utils import (
    ErrorCode,
    create_engine_error_response,
    create_error_response,
    format_lambda_response,
    get_method,
    get_path,
    get_path_parts,
    get_user_id_from_event,
    is_admin_event,
    parse_json_body,
    resolve_target_user_id,
)
from progress_backend.utils.aws_env_vars import get_metrics_namespace
from progress_backend.utils.base_types import ContentId, ModuleId, UserId
from progress_backend.utils.errors import PreconditionFailedError, ProgressEngineError

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class ProgressApiHandler:
    def __init__(
        self,
        tracker: ProgressTracker,
        projections: ProgressProjections,
        metrics_manager: MetricsManager,
    ):
        self.tracker = tracker
        self.projections = projections
        self.metrics_manager = metrics_manager

    def _record_completion_metrics(self, response: ProgressRecordResponseModel) -> None:
        if response.newlyCompleted:
            self.metrics_manager.put_metric("ContentCompleted", 1)
        effects = response.effects
        if effects is None:
            return
        xp_total = effects.xpAwarded + effects.moduleBonusXp
        if xp_total:
            self.metrics_manager.put_metric("XpAwarded", xp_total)
        if effects.newlyCompletedAchievements:
            self.metrics_manager.put_metric("AchievementUnlocked", len(effects.newlyCompletedAchievements))
        if effects.moduleCompleted:
            self.metrics_manager.put_metric("ModuleCompleted", 1)

    def _handle_get_overall(self, user_id: UserId, event: dict) -> dict:
        overall = self.projections.overall_progress(user_id)
        return format_lambda_response(200, overall.model_dump(exclude_none=True), event=event)

    def _handle_get_module(self, user_id: UserId, module_id: ModuleId, event: dict) -> dict:
        module_progress = self.projections.module_progress(user_id, module_id)
        return format_lambda_response(200, module_progress.model_dump(exclude_none=True), event=event)

    def _handle_get_module_stats(self, module_id: ModuleId, event: dict) -> dict:
        if not is_admin_event(event):
            _LOGGER.warning(f"Non-admin attempted to read progress stats for module {module_id}")
            return create_error_response(ErrorCode.AUTHORIZATION_FAILED, event=event)
        stats = self.projections.module_progress_stats(module_id)
        return format_lambda_response(200, stats.model_dump(exclude_none=True), event=event)

    def _handle_get_content(self, user_id: UserId, content_id: ContentId, event: dict) -> dict:
        response = self.tracker.get(user_id, content_id)
        return format_lambda_response(200, response.model_dump(exclude_none=True), event=event)

    def _handle_start(self, user_id: UserId, content_id: ContentId, event: dict) -> dict:
        response = self.tracker.start(user_id, content_id)
        status_code = 200 if response.alreadyStarted else 201
        return format_lambda_response(status_code, response.model_dump(exclude_none=True), event=event)

    def _handle_update(self, user_id: UserId, content_id: ContentId, event: dict) -> dict:
        body = parse_json_body(event)
        if body is None:
            return create_error_response(ErrorCode.VALIDATION_ERROR, "Request body is missing.", event=event)

        update_input = UpdateProgressInputModel.model_validate(body)
        response = self.tracker.update_progress(
            user_id,
            content_id,
            update_input.progressPercentage,
            update_input.timeSpent,
        )
        self._record_completion_metrics(response)
        return format_lambda_response(200, response.model_dump(exclude_none=True), event=event)

    def _handle_complete(self, user_id: UserId, content_id: ContentId, event: dict) -> dict:
        complete_input = CompleteContentInputModel.model_validate(parse_json_body(event) or {})
        response = self.tracker.complete(
            user_id,
            content_id,
            score=complete_input.score,
            max_score=complete_input.maxScore,
            time_spent=complete_input.timeSpent,
        )
        self._record_completion_metrics(response)
        return format_lambda_response(200, response.model_dump(exclude_none=True), event=event)

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

        _LOGGER.info(f"ProgressApiHandler: {http_method} {path} for user: {user_id}")

        try:
            if http_method == "GET" and path_parts == ["progress"]:
                return self._handle_get_overall(user_id, event)

            elif http_method == "GET" and len(path_parts) == 3 and path_parts[:2] == ["progress", "modules"]:
                # Path: /progress/modules/{moduleId}
                return self._handle_get_module(user_id, ModuleId(path_parts[2]), event)

            elif http_method == "GET" and len(path_parts) == 4 and path_parts[:2] == ["progress", "modules"]:
                # Path: /progress/modules/{moduleId}/stats
                if path_parts[3] != "stats":
                    return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)
                return self._handle_get_module_stats(ModuleId(path_parts[2]), event)

            elif len(path_parts) == 3 and path_parts[:2] == ["progress", "content"]:
                # Path: /progress/content/{contentId}
                content_id = ContentId(path_parts[2])
                if http_method == "GET":
                    return self._handle_get_content(user_id, content_id, event)
                elif http_method == "PUT":
                    return self._handle_update(user_id, content_id, event)

            elif http_method == "POST" and len(path_parts) == 4 and path_parts[:2] == ["progress", "content"]:
                # Path: /progress/content/{contentId}/{start|complete}
                content_id = ContentId(path_parts[2])
                if path_parts[3] == "start":
                    return self._handle_start(user_id, content_id, event)
                elif path_parts[3] == "complete":
                    return self._handle_complete(user_id, content_id, event)

            _LOGGER.warning(f"Unsupported path or method for Progress: {http_method} {path}")
            return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)

        except ValidationError as e:
            _LOGGER.error(f"Progress request body validation error: {e.errors()}")
            return create_error_response(
                ErrorCode.VALIDATION_ERROR,
                details=e.errors(include_url=False, include_context=False),
                event=event,
            )
        except json.JSONDecodeError:
            _LOGGER.error("Progress request body is not valid JSON.", exc_info=True)
            return create_error_response(ErrorCode.VALIDATION_ERROR, "Request body is not valid JSON.", event=event)
        except ProgressEngineError as e:
            _LOGGER.warning(f"Progress request for user {user_id} rejected: {e.message}")
            if isinstance(e, PreconditionFailedError):
                self.metrics_manager.put_metric("PreconditionRejected", 1)
            return create_engine_error_response(e, event=event)
        except Exception as e:
            _LOGGER.error(f"Unexpected error in ProgressApiHandler for user {user_id}: {str(e)}", exc_info=True)
            return create_error_response(ErrorCode.INTERNAL_ERROR, event=event)


def progress_lambda_handler(event: dict[str, typing.Any], context: typing.Any) -> dict[str, typing.Any]:
    _LOGGER.debug("Global progress_lambda_handler received event.")
    metrics_manager = MetricsManager(get_metrics_namespace())
    metrics_manager.set_dimension("Handler", "Progress")

    try:
        engine = ProgressEngine.from_env()
        api_handler = ProgressApiHandler(
            tracker=engine.tracker,
            projections=engine.projections,
            metrics_manager=metrics_manager,
        )
        return api_handler.handle(event)

    except ValueError as ve:
        _LOGGER.critical(f"Configuration error in progress_lambda_handler: {str(ve)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR, "Server configuration error")
    except Exception as e:
        _LOGGER.critical(f"Error during ProgressApiHandler setup: {str(e)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR)
    finally:
        metrics_manager.flush()
