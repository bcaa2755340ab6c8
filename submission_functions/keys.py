"""Storage key derivation for submissions.

Keys look like ``{role}/{yyyy}/{mm}/{dd}/{epoch-ms}-{hex6}/{base}{suffix}``.
The date folder is only for browsing; uniqueness comes from the submission id.
"""
import re
import time
import secrets
import threading
import mimetypes
import unicodedata
from datetime import datetime, timezone
from typing import Callable, Optional

ROLE_ORIGINALS = 'originals'
ROLE_SUBMISSIONS = 'submissions'
ROLES = (ROLE_ORIGINALS, ROLE_SUBMISSIONS)

DERIVED_SUFFIX = '_out.jpg'
DEFAULT_BASE_NAME = 'image'
MAX_BASE_LENGTH = 64
MAX_EXTENSION_LENGTH = 10

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_-]+')
_EXTENSION = re.compile(r'\.([^./\\]+)$')


def sanitize_base_name(name: Optional[str]) -> str:
    """Reduce an attacker-controlled file name to a safe key segment"""
    value = name if isinstance(name, str) and name else DEFAULT_BASE_NAME
    value = re.split(r'[/\\]', value)[-1]
    value = _EXTENSION.sub('', value)
    value = unicodedata.normalize('NFKD', value)
    value = _UNSAFE_CHARS.sub('_', value)
    return value[:MAX_BASE_LENGTH] or DEFAULT_BASE_NAME


def original_extension(name: Optional[str], content_type: Optional[str] = None) -> str:
    """Extension for the stored original, e.g. ``.png``; empty if unknown"""
    if isinstance(name, str) and name:
        match = _EXTENSION.search(re.split(r'[/\\]', name)[-1])
        if match:
            ext = re.sub(r'[^a-z0-9]', '', match.group(1).lower())[:MAX_EXTENSION_LENGTH]
            if ext:
                return '.' + ext
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(';')[0].strip())
        if guessed:
            return guessed
    return ''


def folder_date(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime('%Y/%m/%d')


def derive_key(role: str, submission_id: str, base_name: str, folder: str, suffix: str) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown storage role: {role}")
    return f"{role}/{folder}/{submission_id}/{base_name}{suffix}"


class SubmissionIdGenerator:
    """Issues ``{epoch-ms}-{3 random bytes as hex}`` ids.

    Ids issued in the current millisecond are remembered so a random-suffix
    collision is redrawn instead of handed out twice.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None,
                 random_hex: Optional[Callable[[int], str]] = None):
        self._clock = clock or time.time
        self._random_hex = random_hex or secrets.token_hex
        self._lock = threading.Lock()
        self._bucket_ms = None
        self._issued = set()

    def new_id(self) -> str:
        with self._lock:
            epoch_ms = int(self._clock() * 1000)
            if epoch_ms != self._bucket_ms:
                self._bucket_ms = epoch_ms
                self._issued = set()
            suffix = self._random_hex(3)
            while suffix in self._issued:
                suffix = self._random_hex(3)
            self._issued.add(suffix)
            return f"{epoch_ms}-{suffix}"
