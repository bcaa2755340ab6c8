"""Schema-adaptive metadata recorder.

Submission metadata is written into operator-managed Notion databases whose
property names, kinds and option lists can change at any time. Every write
is resolved against a freshly fetched ``SchemaView``:

* logical fields map to property names through ``FieldMapping``;
* fields whose property is missing are skipped;
* values are shaped by the live property kind (``shape_value``);
* select / multi-select option domains are extended with unseen values
  before the record is created.

Recording is best-effort. ``SchemaAdapter.record_submission`` returns a
``RecordOutcome`` and never raises.
"""
import re
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from submission_functions.forms import first_value
from submission_functions.record_store import RecordStore, SchemaView, PropertySpec

logger = logging.getLogger(__name__)

SUBMISSIONS = 'submissions'
ORIGINALS = 'originals'

DEFAULT_FIELD_MAP = {
    SUBMISSIONS: {
        'name': 'Name',
        'email': 'Email',
        'models': 'Models',
        'status': 'Status',
        'output_url': 'OutputURL',
        'output_key': 'OutputKey',
        'output_bytes': 'OutputBytes',
        'output_file': 'Output',
        'original_url': 'OriginalURL',
        'original_link': 'Original',
        'consent_gallery': 'ConsentGallery',
        'consent_training': 'ConsentTraining',
        'watermark': 'Watermark',
        'submission_id': 'SubmissionID',
        'created_at': 'CreatedAt',
        'completed_at': 'CompletedAt',
    },
    ORIGINALS: {
        'name': 'Name',
        'email': 'Email',
        'original_url': 'URL',
        'original_key': 'Key',
        'original_bytes': 'Bytes',
        'original_content_type': 'ContentType',
        'original_file': 'File',
        'submission_id': 'SubmissionID',
        'submission_link': 'Submission',
        'created_at': 'CreatedAt',
    },
}

MAX_TEXT_LENGTH = 2000
MAX_OPTION_LENGTH = 100
EXTENDABLE_KINDS = ('select', 'multi_select')
SINGLE_CHOICE_KINDS = ('select', 'status')
_RECORD_ID = re.compile(r'^[0-9a-fA-F]{8}-?(?:[0-9a-fA-F]{4}-?){3}[0-9a-fA-F]{12}$')


class FieldMapping:
    """Logical field name -> external property name, per ledger"""

    def __init__(self, ledgers: Optional[Dict[str, Dict[str, str]]] = None):
        source = DEFAULT_FIELD_MAP if ledgers is None else ledgers
        self.ledgers = {ledger: dict(fields) for ledger, fields in source.items()}

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Dict[str, str]]]) -> 'FieldMapping':
        """Defaults merged with operator overrides; an empty name disables a field"""
        mapping = cls()
        for ledger, fields in (overrides or {}).items():
            if not isinstance(fields, dict):
                logger.warning("Ignoring field map override for %s: expected an object", ledger)
                continue
            target = mapping.ledgers.setdefault(ledger, {})
            for logical, prop in fields.items():
                target[logical] = prop if isinstance(prop, str) else ''
        return mapping

    def items(self, ledger: str) -> Iterator[Tuple[str, str]]:
        for logical, prop in self.ledgers.get(ledger, {}).items():
            if prop:
                yield logical, prop

    def property_for(self, ledger: str, logical: str) -> Optional[str]:
        return self.ledgers.get(ledger, {}).get(logical) or None


@dataclass(frozen=True)
class ExternalFile:
    """A file already published elsewhere, linked by URL"""
    name: str
    url: str


@dataclass
class SubmissionRecord:
    """The stable internal view of one submission's metadata"""
    submission_id: str
    name: str
    output_url: str
    output_key: str
    output_bytes: int
    models: List[str] = field(default_factory=list)
    email: str = ''
    status: str = 'Done'
    consent_gallery: bool = False
    consent_training: bool = False
    watermark: bool = False
    original_url: Optional[str] = None
    original_key: Optional[str] = None
    original_bytes: Optional[int] = None
    original_content_type: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def value_for(self, logical: str) -> Any:
        if logical == 'output_file':
            return ExternalFile(self.output_key.rsplit('/', 1)[-1], self.output_url)
        if logical == 'original_file':
            if not self.original_url:
                return None
            return ExternalFile((self.original_key or self.original_url).rsplit('/', 1)[-1], self.original_url)
        return getattr(self, logical, None)


@dataclass
class RecordOutcome:
    record_ids: Dict[str, str] = field(default_factory=dict)
    written: Dict[str, List[str]] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def option_name(value: Any) -> str:
    """Notion option names can't contain commas and are capped at 100 chars"""
    return str(value).replace(',', ' ').strip()[:MAX_OPTION_LENGTH]


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def option_names(value: Any) -> List[str]:
    """Distinct non-empty option names for a scalar or list value, in order"""
    names = []
    for candidate in _as_list(value):
        name = option_name(candidate)
        if name and name not in names:
            names.append(name)
    return names


def _as_text(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, ExternalFile):
        return value.url
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    if isinstance(value, (list, tuple, set, frozenset)):
        return ', '.join(_as_text(v) for v in value)
    return str(value)


def _rich_text(text: str) -> List[Dict[str, Any]]:
    return [{'type': 'text', 'text': {'content': text[:MAX_TEXT_LENGTH]}}]


def _as_number(value: Any):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value) if '.' in value else int(value)
        except ValueError:
            return None
    return None


def _as_date(value: Any) -> Optional[str]:
    """ISO-8601 start for a date property, or None for anything that isn't a date"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).isoformat()
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def shape_value(kind: str, value: Any) -> Optional[Dict[str, Any]]:
    """Shape a logical value for a property of the given live kind.

    Returns ``None`` when the value can't be represented by that kind, in
    which case the property is left out of the write.
    """
    if kind == 'checkbox':
        return {'checkbox': _as_bool(value)}
    if kind == 'multi_select':
        return {'multi_select': [{'name': name} for name in option_names(value)]}
    if value is None or value == '':
        return None

    if kind in ('title', 'rich_text'):
        return {kind: _rich_text(_as_text(value))}
    if kind == 'number':
        number = _as_number(value)
        return None if number is None else {'number': number}
    if kind == 'url':
        return {'url': value.url if isinstance(value, ExternalFile) else str(value)}
    if kind in ('email', 'phone_number'):
        return {kind: str(value)}
    if kind == 'date':
        start = _as_date(value)
        return None if start is None else {'date': {'start': start}}
    if kind in ('select', 'status'):
        value = first_value(value, None)
        name = option_name(value) if value is not None else ''
        return {kind: {'name': name}} if name else None
    if kind == 'files':
        if isinstance(value, ExternalFile):
            ref = value
        elif isinstance(value, str):
            ref = ExternalFile(value.rsplit('/', 1)[-1] or 'file', value)
        else:
            return None
        return {'files': [{'name': ref.name[:MAX_OPTION_LENGTH], 'type': 'external', 'external': {'url': ref.url}}]}
    if kind == 'relation':
        ids = [v for v in _as_list(value) if isinstance(v, str) and _RECORD_ID.match(v)]
        return {'relation': [{'id': v} for v in ids]} if ids else None
    return None


def describe_schema(store: RecordStore, target: str) -> Dict[str, Dict[str, str]]:
    view = store.retrieve_schema(target)
    return {name: {'type': kind} for name, kind in view.kinds().items()}


class SchemaAdapter:
    """Records submissions into whatever shape the live ledgers have"""

    def __init__(self, store: RecordStore, mapping: Optional[FieldMapping] = None):
        self.store = store
        self.mapping = mapping or FieldMapping()

    def record_submission(self, record: SubmissionRecord, submissions_target: str,
                          originals_target: Optional[str] = None) -> RecordOutcome:
        outcome = RecordOutcome()
        try:
            original_id, originals_view = None, None
            if originals_target and record.original_url:
                original_id, originals_view = self._record_ledger(ORIGINALS, originals_target, record, {}, outcome)

            links = {'original_link': original_id} if original_id else {}
            submission_id, _ = self._record_ledger(SUBMISSIONS, submissions_target, record, links, outcome)

            linked = 'original_link' in outcome.written.get(SUBMISSIONS, [])
            if original_id and submission_id and not linked:
                self._back_link(originals_view, original_id, submission_id, outcome)
        except Exception as e:
            logger.exception("Metadata recording for %s aborted", record.submission_id)
            outcome.errors.append(f"unexpected: {e}")
        return outcome

    def _record_ledger(self, ledger: str, target: str, record: SubmissionRecord,
                       extra_values: Dict[str, Any], outcome: RecordOutcome):
        try:
            view = self.store.retrieve_schema(target)
        except Exception as e:
            logger.warning("Schema for %s ledger unavailable, skipping it: %s", ledger, e)
            outcome.errors.append(f"{ledger}: schema unavailable: {e}")
            return None, None

        properties = {}
        written = []
        for logical, prop_name in self.mapping.items(ledger):
            spec = view.get(prop_name)
            if spec is None:
                outcome.skipped.append(f"{ledger}.{logical}")
                continue
            value = extra_values[logical] if logical in extra_values else record.value_for(logical)
            try:
                view, shaped = self._shape_for(view, spec, value)
            except Exception as e:
                logger.warning("Skipping %s.%s (%s): %s", ledger, logical, prop_name, e)
                outcome.errors.append(f"{ledger}.{logical}: {e}")
                continue
            if shaped is None:
                outcome.skipped.append(f"{ledger}.{logical}")
                continue
            properties[prop_name] = shaped
            written.append(logical)

        try:
            record_id = self.store.create_record(target, properties)
        except Exception as e:
            logger.warning("Creating %s record failed: %s", ledger, e)
            outcome.errors.append(f"{ledger}: create failed: {e}")
            return None, view

        logger.info("Recorded %s %s as %s (%d properties)", ledger, record.submission_id, record_id, len(properties))
        outcome.record_ids[ledger] = record_id
        outcome.written[ledger] = written
        return record_id, view

    def _shape_for(self, view: SchemaView, spec: PropertySpec, value: Any):
        if spec.kind in SINGLE_CHOICE_KINDS:
            # a single-choice property takes one value; lists resolve to their first element
            value = first_value(value, None)
            if value is None or not option_name(value):
                return view, None
        if spec.kind in EXTENDABLE_KINDS:
            view = self._ensure_options(view, spec, value)
        elif spec.kind == 'status' and option_name(value) not in spec.options:
            # status options can't be added through the API
            return view, None
        elif spec.kind == 'relation' and not value:
            return view, None
        return view, shape_value(spec.kind, value)

    def _ensure_options(self, view: SchemaView, spec: PropertySpec, value: Any) -> SchemaView:
        """Add the options ``value`` needs that the snapshot doesn't list yet"""
        missing = [name for name in option_names(value) if name not in spec.options]
        if not missing:
            return view

        options = list(spec.options) + missing
        logger.info("Extending %s.%s options with %s", view.target, spec.name, missing)
        self.store.update_schema_options(view.target, spec.name, spec.kind, options)
        return view.with_options(spec.name, options)

    def _back_link(self, originals_view: Optional[SchemaView], original_id: str,
                   submission_id: str, outcome: RecordOutcome) -> None:
        prop_name = self.mapping.property_for(ORIGINALS, 'submission_link')
        spec = originals_view.get(prop_name) if (originals_view and prop_name) else None
        if spec is None or spec.kind != 'relation':
            logger.info("No relation between ledgers; records %s and %s stay unlinked", original_id, submission_id)
            return
        try:
            self.store.update_record(original_id, {prop_name: shape_value('relation', submission_id)})
        except Exception as e:
            logger.warning("Linking original %s to submission %s failed: %s", original_id, submission_id, e)
            outcome.errors.append(f"{ORIGINALS}.submission_link: {e}")
