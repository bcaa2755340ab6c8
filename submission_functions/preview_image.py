import logging
from typing import Any, Dict

from submission_functions.common import ResponseFormatter, Settings
from submission_functions.exceptions import CapacityError, SubmissionError
from submission_functions.forms import SubmissionForm
from submission_functions.process_submission import get_settings, request_method
from submission_functions.transforms import OUTPUT_CONTENT_TYPE, TransformChain

logger = logging.getLogger(__name__)


def handle(event: Dict[str, Any], settings: Settings, chain: TransformChain,
           formatter: ResponseFormatter) -> Dict[str, Any]:
    """Run the transform chain only; nothing is stored or recorded"""
    try:
        form = SubmissionForm.from_event(
            event,
            max_body_bytes=settings.max_file_bytes,
            limit_mb=settings.max_file_mb,
            default_max_width=settings.preview_max_width
        )
        if len(form.file.data) > settings.max_file_bytes:
            raise CapacityError('upload exceeds limit', limit_mb=settings.max_file_mb)
        output = chain.render(form.file.data, form.models, max_width=form.max_width)
        return formatter.binary_response(output, OUTPUT_CONTENT_TYPE)
    except CapacityError as e:
        return formatter.error_response(e.public_message, e.status_code, limit_mb=settings.max_file_mb)
    except SubmissionError as e:
        logger.warning("Preview failed (%s): %s", type(e).__name__, e)
        return formatter.error_response(e.public_message, e.status_code)
    except Exception:
        logger.exception("Unexpected error rendering preview")
        return formatter.error_response('preview failed', 500)


def lambda_handler(event, context):
    """
    Render a preview of the requested enhancements
    """
    settings = get_settings()
    formatter = ResponseFormatter(settings.allowed_origin)

    method = request_method(event)
    if method == 'OPTIONS':
        return formatter.preflight_response()
    if method and method != 'POST':
        return formatter.method_not_allowed()

    return handle(event, settings, TransformChain(settings.watermark_label), formatter)
