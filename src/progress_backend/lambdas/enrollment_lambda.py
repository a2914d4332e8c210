import logging
import typing

from progress_backend.cloudwatch.metrics import MetricsManager
from progress_backend.models.enrollment_models import ListOfEnrollmentsResponseModel
from progress_backend.services.engine import ProgressEngine
from progress_backend.services.enrollment_aggregator import EnrollmentAggregator
from progress_backend.services.progress_projections import ProgressProjections
from progress_backend.utils.apig_utils import (
    ErrorCode,
    create_engine_error_response,
    create_error_response,
    format_lambda_response,
    get_method,
    get_path,
    get_path_parts,
    get_query_string_parameters,
    get_user_id_from_event,
    is_admin_event,
    resolve_target_user_id,
)
from progress_backend.utils.aws_env_vars import get_metrics_namespace
from progress_backend.utils.base_types import EnrollmentStatus, ModuleId, UserId
from progress_backend.utils.errors import PreconditionFailedError, ProgressEngineError

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

_ENROLLMENT_STATUSES = ("active", "paused", "completed", "dropped")


class EnrollmentApiHandler:
    def __init__(
        self,
        aggregator: EnrollmentAggregator,
        projections: ProgressProjections,
        metrics_manager: MetricsManager,
    ):
        self.aggregator = aggregator
        self.projections = projections
        self.metrics_manager = metrics_manager

    def _handle_list(self, user_id: UserId, event: dict) -> dict:
        status = get_query_string_parameters(event).get("status")
        if status and status not in _ENROLLMENT_STATUSES:
            return create_error_response(ErrorCode.VALIDATION_ERROR, f"Unknown enrollment status: {status}", event=event)

        enrollments = self.aggregator.list_for_user(user_id, typing.cast(EnrollmentStatus, status) if status else None)
        response = ListOfEnrollmentsResponseModel(enrollments=enrollments)
        return format_lambda_response(200, response.model_dump(exclude_none=True), event=event)

    def _handle_enroll(self, user_id: UserId, module_id: ModuleId, event: dict) -> dict:
        result = self.aggregator.enroll(user_id, module_id)
        if result.xpAwarded:
            self.metrics_manager.put_metric("XpAwarded", result.xpAwarded)
        if result.newlyCompletedAchievements:
            self.metrics_manager.put_metric("AchievementUnlocked", len(result.newlyCompletedAchievements))
        return format_lambda_response(201, result.model_dump(exclude_none=True), event=event)

    def _handle_action(self, user_id: UserId, module_id: ModuleId, action: str, event: dict) -> dict:
        if action == "pause":
            enrollment = self.aggregator.pause(user_id, module_id)
        elif action == "drop":
            enrollment = self.aggregator.drop(user_id, module_id)
        elif action == "complete":
            if not is_admin_event(event):
                _LOGGER.warning(f"Non-admin attempted to force-complete enrollment {user_id}/{module_id}")
                return create_error_response(ErrorCode.AUTHORIZATION_FAILED, event=event)
            enrollment = self.aggregator.complete(user_id, module_id)
        elif action == "resume":
            result = self.aggregator.resume(user_id, module_id)
            if result.moduleCompleted:
                self.metrics_manager.put_metric("ModuleCompleted", 1)
                self.metrics_manager.put_metric("XpAwarded", result.bonusXpAwarded)
            return format_lambda_response(200, result.model_dump(exclude_none=True), event=event)
        else:
            return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)

        return format_lambda_response(200, enrollment.model_dump(exclude_none=True), event=event)

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

        _LOGGER.info(f"EnrollmentApiHandler: {http_method} {path} for user: {user_id}")

        try:
            if not path_parts or path_parts[0] != "enrollments":
                return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)

            if http_method == "GET" and len(path_parts) == 1:
                return self._handle_list(user_id, event)

            if len(path_parts) == 2:
                # Path: /enrollments/{moduleId}
                module_id = ModuleId(path_parts[1])
                if http_method == "GET":
                    enrollment = self.aggregator.get(user_id, module_id)
                    return format_lambda_response(200, enrollment.model_dump(exclude_none=True), event=event)
                elif http_method == "POST":
                    return self._handle_enroll(user_id, module_id, event)
                elif http_method == "DELETE":
                    self.aggregator.unenroll(user_id, module_id)
                    return format_lambda_response(204, None, event=event)

            if http_method == "GET" and len(path_parts) == 3 and path_parts[2] == "stats":
                # Path: /enrollments/{moduleId}/stats
                if not is_admin_event(event):
                    _LOGGER.warning(f"Non-admin attempted to read enrollment stats for module {path_parts[1]}")
                    return create_error_response(ErrorCode.AUTHORIZATION_FAILED, event=event)
                stats = self.projections.module_enrollment_stats(ModuleId(path_parts[1]))
                return format_lambda_response(200, stats.model_dump(exclude_none=True), event=event)

            if http_method == "POST" and len(path_parts) == 3:
                # Path: /enrollments/{moduleId}/{pause|resume|complete|drop}
                return self._handle_action(user_id, ModuleId(path_parts[1]), path_parts[2], event)

            _LOGGER.warning(f"Unsupported path or method for Enrollments: {http_method} {path}")
            return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)

        except ProgressEngineError as e:
            _LOGGER.warning(f"Enrollment request for user {user_id} rejected: {e.message}")
            if isinstance(e, PreconditionFailedError):
                self.metrics_manager.put_metric("PreconditionRejected", 1)
            return create_engine_error_response(e, event=event)
        except Exception as e:
            _LOGGER.error(f"Unexpected error in EnrollmentApiHandler for user {user_id}: {str(e)}", exc_info=True)
            return create_error_response(ErrorCode.INTERNAL_ERROR, event=event)


def enrollment_lambda_handler(event: dict[str, typing.Any], context: typing.Any) -> dict[str, typing.Any]:
    _LOGGER.debug("Global enrollment_lambda_handler received event.")
    metrics_manager = MetricsManager(get_metrics_namespace())
    metrics_manager.set_dimension("Handler", "Enrollment")

    try:
        engine = ProgressEngine.from_env()
        api_handler = EnrollmentApiHandler(
            aggregator=engine.aggregator,
            projections=engine.projections,
            metrics_manager=metrics_manager,
        )
        return api_handler.handle(event)

    except ValueError as ve:
        _LOGGER.critical(f"Configuration error in enrollment_lambda_handler: {str(ve)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR, "Server configuration error")
    except Exception as e:
        _LOGGER.critical(f"Error during EnrollmentApiHandler setup: {str(e)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR)
    finally:
        metrics_manager.flush()
