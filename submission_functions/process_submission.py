import logging
from typing import Any, Dict, Optional

from submission_functions.common import ResponseFormatter, Settings, configure_logging
from submission_functions.coordinator import ServiceFactory, SubmissionCoordinator
from submission_functions.exceptions import CapacityError, ConfigurationError, SubmissionError
from submission_functions.forms import SubmissionForm

logger = logging.getLogger(__name__)

_settings: Optional[Settings] = None
_coordinator: Optional[SubmissionCoordinator] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        configure_logging(_settings.log_level)
    return _settings


def get_coordinator() -> SubmissionCoordinator:
    """Clients are built on the first request and reused by warm invocations"""
    global _coordinator
    if _coordinator is None:
        _coordinator = ServiceFactory.create_coordinator(get_settings())
    return _coordinator


def request_method(event: Dict[str, Any]) -> str:
    method = event.get('httpMethod') or ((event.get('requestContext') or {}).get('http') or {}).get('method') or ''
    return method.upper()


def handle(event: Dict[str, Any], coordinator: SubmissionCoordinator,
           formatter: ResponseFormatter) -> Dict[str, Any]:
    settings = coordinator.settings
    try:
        form = SubmissionForm.from_event(
            event,
            max_body_bytes=settings.max_file_bytes,
            limit_mb=settings.max_file_mb,
            default_max_width=settings.max_width
        )
        return formatter.success_response(coordinator.process(form))
    except CapacityError as e:
        logger.warning("Rejected upload: %s", e)
        return formatter.error_response(e.public_message, e.status_code, limit_mb=settings.max_file_mb)
    except SubmissionError as e:
        logger.warning("Submission failed (%s): %s", type(e).__name__, e)
        return formatter.error_response(e.public_message, e.status_code)
    except Exception as e:
        logger.exception("Unexpected error processing submission")
        return formatter.error_response('process failed', 500, code=type(e).__name__)


def lambda_handler(event, context):
    """
    Accept a multipart image upload, enhance it, store it and record it
    """
    settings = get_settings()
    formatter = ResponseFormatter(settings.allowed_origin)

    method = request_method(event)
    if method == 'OPTIONS':
        return formatter.preflight_response()
    if method and method != 'POST':
        return formatter.method_not_allowed()

    try:
        coordinator = get_coordinator()
    except ConfigurationError as e:
        logger.error("%s", e)
        return formatter.error_response(e.public_message, e.status_code)

    return handle(event, coordinator, formatter)
