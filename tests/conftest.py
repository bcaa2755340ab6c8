import io
import os
import base64
import uuid

import pytest
from PIL import Image

# Set environment variables for testing
os.environ.setdefault('AWS_ACCESS_KEY_ID', 'testing')
os.environ.setdefault('AWS_SECRET_ACCESS_KEY', 'testing')
os.environ.setdefault('AWS_SECURITY_TOKEN', 'testing')
os.environ.setdefault('AWS_SESSION_TOKEN', 'testing')
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')

from submission_functions.record_store import PropertySpec, RecordStore, SchemaView


class FakeRecordStore(RecordStore):
    """In-memory record store that logs every call in order"""

    def __init__(self, schemas=None, fail_schema=False, fail_create=False):
        self.schemas = schemas or {}
        self.fail_schema = fail_schema
        self.fail_create = fail_create
        self.calls = []
        self.records = {}

    def add_schema(self, target, properties):
        """properties: name -> kind, or name -> (kind, [options])"""
        specs = {}
        for name, kind in properties.items():
            options = ()
            if isinstance(kind, tuple):
                kind, options = kind[0], tuple(kind[1])
            specs[name] = PropertySpec(name, kind, options)
        self.schemas[target] = SchemaView(target, specs)

    def retrieve_schema(self, target):
        self.calls.append(('retrieve_schema', target))
        if self.fail_schema:
            raise ConnectionError('record store unreachable')
        return self.schemas[target]

    def update_schema_options(self, target, property_name, kind, option_names):
        self.calls.append(('update_schema_options', target, property_name, list(option_names)))
        self.schemas[target] = self.schemas[target].with_options(property_name, option_names)

    def create_record(self, target, properties):
        self.calls.append(('create_record', target, properties))
        if self.fail_create:
            raise RuntimeError('validation_error')
        record_id = str(uuid.uuid4())
        self.records[record_id] = {'target': target, 'properties': dict(properties)}
        return record_id

    def update_record(self, record_id, properties):
        self.calls.append(('update_record', record_id, properties))
        self.records[record_id]['properties'].update(properties)

    def call_names(self):
        return [call[0] for call in self.calls]


def create_test_image(width=100, height=100, color='red', fmt='JPEG'):
    """Create a test image and return its encoded bytes"""
    img = Image.new('RGB', (width, height), color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def create_gradient_image(width=120, height=80):
    """Image with texture so sharpening and color changes show up"""
    img = Image.new('RGB', (width, height))
    img.putdata([((x * 7) % 256, (y * 11) % 256, ((x + y) * 5) % 256)
                 for y in range(height) for x in range(width)])
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def build_multipart(fields=None, files=None, boundary='----TestBoundary7MA4YWxkTrZu0gW'):
    """files: list of (field name, filename, content type, bytes)"""
    chunks = []
    for name, value in (fields or {}).items():
        chunks.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n{value}\r\n'.encode('utf-8')
        )
    for name, filename, content_type, data in (files or []):
        header = (
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
            f'Content-Type: {content_type}\r\n\r\n'
        ).encode('utf-8')
        chunks.append(header + data + b'\r\n')
    chunks.append(f'--{boundary}--\r\n'.encode('utf-8'))
    return b''.join(chunks), f'multipart/form-data; boundary={boundary}'


def multipart_event(fields=None, files=None, method='POST'):
    body, content_type = build_multipart(fields, files)
    return {
        'httpMethod': method,
        'headers': {'content-type': content_type},
        'body': base64.b64encode(body).decode('ascii'),
        'isBase64Encoded': True
    }


@pytest.fixture
def fake_store():
    return FakeRecordStore()


@pytest.fixture
def test_image():
    return create_test_image


@pytest.fixture
def gradient_image():
    return create_gradient_image()


@pytest.fixture
def make_event():
    return multipart_event
