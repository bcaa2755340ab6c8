import os
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

import boto3
from botocore.exceptions import ClientError
import requests

from submission_functions.exceptions import ConfigurationError
from submission_functions.storage import default_public_base

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


@dataclass
class Settings:
    """Process configuration, read once from the environment"""
    region: str = 'us-east-1'
    bucket: str = ''
    endpoint_url: Optional[str] = None
    cdn_base: str = ''
    allowed_origin: str = '*'
    max_file_mb: int = 60
    max_width: Optional[int] = None
    preview_max_width: int = 1280
    persist_original: bool = True
    watermark_label: str = 'aqua.ai • preview'
    notion_token: str = ''
    submissions_db_id: str = ''
    originals_db_id: str = ''
    field_map_overrides: Dict[str, Dict[str, str]] = field(default_factory=dict)
    notion_timeout: float = 10.0
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Settings':
        overrides = {}
        raw_map = os.environ.get('NOTION_FIELD_MAP', '').strip()
        if raw_map:
            try:
                parsed = json.loads(raw_map)
                if isinstance(parsed, dict):
                    overrides = parsed
                else:
                    logger.warning("NOTION_FIELD_MAP must be a JSON object; ignoring it")
            except json.JSONDecodeError:
                logger.warning("NOTION_FIELD_MAP is not valid JSON; ignoring it")

        return cls(
            region=os.environ.get('AWS_REGION', 'us-east-1'),
            bucket=os.environ.get('AWS_BUCKET', ''),
            endpoint_url=os.environ.get('AWS_ENDPOINT_URL') or None,
            cdn_base=os.environ.get('CDN_BASE', ''),
            allowed_origin=os.environ.get('ALLOWED_ORIGIN', '*'),
            max_file_mb=_env_int('MAX_FILE_MB', 60),
            max_width=_env_int('MAX_WIDTH', None),
            preview_max_width=_env_int('PREVIEW_MAX_WIDTH', 1280),
            persist_original=_env_flag('PERSIST_ORIGINAL', True),
            watermark_label=os.environ.get('WATERMARK_LABEL', 'aqua.ai • preview'),
            notion_token=os.environ.get('NOTION_TOKEN', ''),
            submissions_db_id=os.environ.get('NOTION_SUBMISSIONS_DB_ID', ''),
            originals_db_id=os.environ.get('NOTION_ORIGINALS_DB_ID', ''),
            field_map_overrides=overrides,
            notion_timeout=float(_env_int('NOTION_TIMEOUT_SECONDS', 10)),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
        )

    @property
    def max_file_bytes(self) -> int:
        return self.max_file_mb * 1024 * 1024

    @property
    def public_base(self) -> str:
        base = self.cdn_base or default_public_base(self.region, self.bucket)
        return base.rstrip('/')

    @property
    def metadata_enabled(self) -> bool:
        return bool(self.notion_token and self.submissions_db_id)

    def require_bucket(self) -> None:
        if not self.bucket:
            raise ConfigurationError('missing env: AWS_BUCKET')


def configure_logging(level: str = 'INFO') -> None:
    """Attach a handler once; on Lambda the runtime already installed one"""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())


def create_s3_client(settings: Settings):
    return boto3.client('s3', region_name=settings.region, endpoint_url=settings.endpoint_url)


def create_http_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({'Content-Type': 'application/json'})
    return session


def create_bucket_if_not_exists(s3_client, bucket: str) -> None:
    """Create the artifact bucket if it doesn't exist (LocalStack setups)"""
    try:
        s3_client.head_bucket(Bucket=bucket)
    except ClientError as e:
        if e.response['Error']['Code'] in ('404', 'NoSuchBucket'):
            s3_client.create_bucket(Bucket=bucket)
        else:
            raise


class ResponseFormatter:
    """Formats API Gateway proxy responses"""

    def __init__(self, allowed_origin: str = '*'):
        self.allowed_origin = allowed_origin

    def headers(self, content_type: str = 'application/json') -> Dict[str, str]:
        return {
            'Content-Type': content_type,
            'Access-Control-Allow-Origin': self.allowed_origin
        }

    def success_response(self, data: Dict[str, Any], status_code: int = 200) -> Dict[str, Any]:
        return {
            'statusCode': status_code,
            'headers': self.headers(),
            'body': json.dumps(data, ensure_ascii=False)
        }

    def error_response(self, error_message: str, status_code: int = 400, **extra) -> Dict[str, Any]:
        body = {'error': error_message}
        body.update(extra)
        return {
            'statusCode': status_code,
            'headers': self.headers(),
            'body': json.dumps(body)
        }

    def binary_response(self, data: bytes, content_type: str) -> Dict[str, Any]:
        return {
            'statusCode': 200,
            'headers': self.headers(content_type),
            'body': base64.b64encode(data).decode('ascii'),
            'isBase64Encoded': True
        }

    def preflight_response(self, methods: str = 'POST, OPTIONS') -> Dict[str, Any]:
        headers = self.headers()
        headers['Access-Control-Allow-Methods'] = methods
        headers['Access-Control-Allow-Headers'] = 'Content-Type'
        return {'statusCode': 204, 'headers': headers, 'body': ''}

    def method_not_allowed(self) -> Dict[str, Any]:
        return {'statusCode': 405, 'headers': self.headers(), 'body': ''}
