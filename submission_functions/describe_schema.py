import logging

from submission_functions.common import ResponseFormatter
from submission_functions.coordinator import ServiceFactory
from submission_functions.process_submission import get_settings
from submission_functions.schema_adapter import describe_schema

logger = logging.getLogger(__name__)


def lambda_handler(event, context):
    """
    Report the live property kinds of the submissions ledger
    """
    settings = get_settings()
    formatter = ResponseFormatter(settings.allowed_origin)

    if not settings.submissions_db_id:
        return formatter.error_response('NOTION_SUBMISSIONS_DB_ID missing', 400)
    store = ServiceFactory.create_record_store(settings)
    if store is None:
        return formatter.error_response('NOTION_TOKEN missing', 400)

    try:
        return formatter.success_response({'submissions': describe_schema(store, settings.submissions_db_id)})
    except Exception as e:
        logger.exception("Schema lookup failed")
        return formatter.error_response(str(e), 500)
