"""Inbound request decoding for API Gateway proxy events.

Form values can arrive as a scalar, a list or not at all; everything goes
through ``first_value`` so call sites never repeat that check.
"""
import re
import json
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from submission_functions.exceptions import CapacityError, InputError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = 'application/octet-stream'


def first_value(value: Any, default: str = '') -> Any:
    """absent -> default; scalar -> scalar; list -> first element; else -> default"""
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        return value[0] if value and value[0] is not None else default
    if isinstance(value, (str, bytes, int, float, bool)):
        return value
    return default


def str_field(value: Any) -> str:
    value = first_value(value)
    return value if isinstance(value, str) else ''


def parse_models(raw: Any) -> List[str]:
    """JSON list of model ids; anything malformed means no models"""
    text = str_field(raw)
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.info("Ignoring malformed models field: %r", text[:200])
        return []
    if not isinstance(parsed, list):
        return []
    return [m for m in parsed if isinstance(m, str)]


def parse_flag(raw: Any) -> bool:
    return str_field(raw) == '1'


def parse_max_width(raw: Any, default: Optional[int] = None) -> Optional[int]:
    text = str_field(raw).strip()
    if not text:
        return default
    try:
        width = int(text)
    except ValueError:
        return default
    return width if width > 0 else default


@dataclass
class UploadedFile:
    filename: str
    content_type: str
    data: bytes = field(repr=False)


def _boundary(content_type: str) -> str:
    for part in content_type.split(';'):
        part = part.strip()
        if part.lower().startswith('boundary='):
            boundary = part[9:]
            if boundary.startswith('"') and boundary.endswith('"'):
                boundary = boundary[1:-1]
            return boundary
    raise InputError('could not read multipart boundary')


def parse_multipart(body: bytes, content_type: str) -> Tuple[List[UploadedFile], Dict[str, List[str]]]:
    """Split a multipart/form-data body into file parts and text fields"""
    if 'multipart/form-data' not in (content_type or '').lower():
        raise InputError('Content-Type must be multipart/form-data')

    delimiter = ('--' + _boundary(content_type)).encode('utf-8')
    files = []
    fields = {}

    for part in body.split(delimiter):
        if part.startswith(b'\r\n'):
            part = part[2:]
        if not part or part.startswith(b'--'):
            continue

        header_end = part.find(b'\r\n\r\n')
        if header_end == -1:
            continue
        headers = part[:header_end].decode('utf-8', errors='replace')
        content = part[header_end + 4:]
        if content.endswith(b'\r\n'):
            content = content[:-2]

        name_match = re.search(r'\bname="([^"]*)"', headers)
        if not name_match:
            continue
        filename_match = re.search(r'\bfilename="([^"]*)"', headers)
        type_match = re.search(r'Content-Type:\s*([^\r\n]+)', headers, re.IGNORECASE)

        if filename_match is not None:
            files.append(UploadedFile(
                filename=filename_match.group(1),
                content_type=type_match.group(1).strip() if type_match else DEFAULT_CONTENT_TYPE,
                data=content
            ))
        else:
            fields.setdefault(name_match.group(1), []).append(content.decode('utf-8', errors='replace'))

    return files, fields


def pick_first_file(files: List[UploadedFile]) -> Optional[UploadedFile]:
    for uploaded in files:
        if uploaded.data:
            return uploaded
    return None


def _header(event: Dict[str, Any], name: str) -> str:
    for key, value in (event.get('headers') or {}).items():
        if key.lower() == name.lower():
            return value or ''
    return ''


def event_body(event: Dict[str, Any], max_body_bytes: Optional[int] = None, limit_mb=None) -> bytes:
    body = event.get('body') or b''
    if isinstance(body, str):
        body = base64.b64decode(body) if event.get('isBase64Encoded') else body.encode('utf-8')
    if max_body_bytes is not None and len(body) > max_body_bytes:
        raise CapacityError(f"request body of {len(body)} bytes exceeds limit", limit_mb=limit_mb)
    return body


@dataclass
class SubmissionForm:
    """One decoded upload request"""
    file: UploadedFile
    filename: str = ''
    models: List[str] = field(default_factory=list)
    email: str = ''
    consent_gallery: bool = False
    consent_training: bool = False
    watermark: bool = False
    max_width: Optional[int] = None

    @classmethod
    def from_fields(cls, files: List[UploadedFile], fields: Dict[str, Any],
                    default_max_width: Optional[int] = None) -> 'SubmissionForm':
        uploaded = pick_first_file(files)
        if uploaded is None:
            raise InputError('no file received')
        return cls(
            file=uploaded,
            filename=str_field(fields.get('filename')),
            models=parse_models(fields.get('models')),
            email=str_field(fields.get('email')).strip(),
            consent_gallery=parse_flag(fields.get('consent_gallery')),
            consent_training=parse_flag(fields.get('consent_training')),
            watermark=parse_flag(fields.get('wm')),
            max_width=parse_max_width(fields.get('max_width'), default_max_width)
        )

    @classmethod
    def from_event(cls, event: Dict[str, Any], max_body_bytes: Optional[int] = None,
                   limit_mb=None, default_max_width: Optional[int] = None) -> 'SubmissionForm':
        # multipart framing adds overhead on top of the file itself
        ceiling = max_body_bytes + 1024 * 1024 if max_body_bytes is not None else None
        body = event_body(event, ceiling, limit_mb)
        files, fields = parse_multipart(body, _header(event, 'Content-Type'))
        return cls.from_fields(files, fields, default_max_width)

    @property
    def display_name(self) -> str:
        """Caller-supplied name wins over the uploaded file's own name"""
        return self.filename or self.file.filename
