import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from submission_functions.common import Settings, create_bucket_if_not_exists, create_http_session, create_s3_client
from submission_functions.exceptions import CapacityError
from submission_functions.forms import SubmissionForm
from submission_functions.keys import (
    DERIVED_SUFFIX, ROLE_ORIGINALS, ROLE_SUBMISSIONS, SubmissionIdGenerator,
    derive_key, folder_date, original_extension, sanitize_base_name
)
from submission_functions.record_store import NotionRecordStore
from submission_functions.schema_adapter import FieldMapping, SchemaAdapter, SubmissionRecord
from submission_functions.storage import ArtifactStore, S3ArtifactStore
from submission_functions.transforms import (
    OUTPUT_CONTENT_TYPE, TransformChain, detected_content_type, encode_jpeg, load_image
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionCoordinator:
    """Runs one submission from upload to response.

    Received -> OriginalPersisted (optional) -> Transformed -> DerivedPersisted
    -> MetadataAttempted -> Completed. Errors before DerivedPersisted propagate;
    metadata failures are logged and dropped.
    """

    def __init__(self,
                 settings: Settings,
                 artifact_store: ArtifactStore,
                 transform_chain: TransformChain,
                 schema_adapter: Optional[SchemaAdapter] = None,
                 id_generator: Optional[SubmissionIdGenerator] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings
        self.artifact_store = artifact_store
        self.transform_chain = transform_chain
        self.schema_adapter = schema_adapter
        self.id_generator = id_generator or SubmissionIdGenerator()
        self.clock = clock or utc_now

    def process(self, form: SubmissionForm) -> Dict[str, Any]:
        upload = form.file
        if len(upload.data) > self.settings.max_file_bytes:
            raise CapacityError(
                f"upload of {len(upload.data)} bytes exceeds {self.settings.max_file_mb} MB",
                limit_mb=self.settings.max_file_mb
            )

        created_at = self.clock()
        submission_id = self.id_generator.new_id()
        base_name = sanitize_base_name(form.display_name)
        folder = folder_date(created_at)
        logger.info("Received %s (%s, %d bytes, models=%s)", submission_id, base_name, len(upload.data), form.models)

        # Decode before any write so a bad file never leaves an orphaned original.
        image = load_image(upload.data)

        original = None
        if self.settings.persist_original:
            # stored type and extension come from the decoded format, never the caller
            stored_type = detected_content_type(image)
            key = derive_key(ROLE_ORIGINALS, submission_id, base_name, folder,
                             original_extension(None, stored_type))
            url = self.artifact_store.put(key, upload.data, stored_type)
            original = {'url': url, 'key': key, 'bytes': len(upload.data), 'content_type': upload.content_type}
            logger.info("%s: original persisted", submission_id)

        image = self.transform_chain.apply_chain(image, form.models, max_width=form.max_width,
                                                 watermark=form.watermark)
        output = encode_jpeg(image)
        logger.info("%s: transformed (%dx%d, %d bytes)", submission_id, image.width, image.height, len(output))

        key = derive_key(ROLE_SUBMISSIONS, submission_id, base_name, folder, DERIVED_SUFFIX)
        url = self.artifact_store.put(key, output, OUTPUT_CONTENT_TYPE)
        logger.info("%s: derived artifact persisted", submission_id)

        response = {'id': submission_id, 'url': url, 'key': key, 'bytes': len(output), 'wm': form.watermark}
        if original:
            response['original'] = original

        record = SubmissionRecord(
            submission_id=submission_id,
            name=base_name,
            output_url=url,
            output_key=key,
            output_bytes=len(output),
            models=list(form.models),
            email=form.email,
            consent_gallery=form.consent_gallery,
            consent_training=form.consent_training,
            watermark=form.watermark,
            original_url=original['url'] if original else None,
            original_key=original['key'] if original else None,
            original_bytes=original['bytes'] if original else None,
            original_content_type=original['content_type'] if original else None,
            created_at=created_at,
            completed_at=self.clock()
        )
        self._record_metadata(record)

        logger.info("%s: completed", submission_id)
        return response

    def _record_metadata(self, record: SubmissionRecord) -> None:
        if self.schema_adapter is None or not self.settings.submissions_db_id:
            logger.debug("%s: metadata recording not configured", record.submission_id)
            return
        outcome = self.schema_adapter.record_submission(
            record, self.settings.submissions_db_id, self.settings.originals_db_id or None
        )
        if outcome.ok:
            logger.info("%s: metadata recorded %s", record.submission_id, outcome.record_ids)
        else:
            logger.warning("%s: metadata partially recorded %s, errors: %s",
                           record.submission_id, outcome.record_ids, outcome.errors)


class ServiceFactory:
    """Builds process-wide clients once and wires them into services"""

    @staticmethod
    def create_record_store(settings: Settings) -> Optional[NotionRecordStore]:
        if not settings.metadata_enabled:
            return None
        return NotionRecordStore(settings.notion_token, session=create_http_session(),
                                 timeout=settings.notion_timeout)

    @staticmethod
    def create_coordinator(settings: Settings) -> SubmissionCoordinator:
        settings.require_bucket()
        s3_client = create_s3_client(settings)
        if settings.endpoint_url:
            create_bucket_if_not_exists(s3_client, settings.bucket)

        store = ServiceFactory.create_record_store(settings)
        adapter = None
        if store is not None:
            adapter = SchemaAdapter(store, FieldMapping.from_overrides(settings.field_map_overrides))

        return SubmissionCoordinator(
            settings=settings,
            artifact_store=S3ArtifactStore(settings.bucket, s3_client, settings.public_base),
            transform_chain=TransformChain(settings.watermark_label),
            schema_adapter=adapter
        )
