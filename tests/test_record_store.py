from unittest.mock import MagicMock

import pytest
import requests

from submission_functions.exceptions import RecordStoreError
from submission_functions.record_store import NotionRecordStore, parse_database_schema

DATABASE = {
    'object': 'database',
    'id': 'subs-db',
    'properties': {
        'Name': {'id': 'title', 'name': 'Name', 'type': 'title', 'title': {}},
        'Status': {'id': 'a1', 'name': 'Status', 'type': 'select',
                   'select': {'options': [{'id': 'o1', 'name': 'Done', 'color': 'green'}]}},
        'Models': {'id': 'a2', 'name': 'Models', 'type': 'multi_select',
                   'multi_select': {'options': [{'name': 'dehaze'}, {'name': 'superres'}]}},
        'Original': {'id': 'a3', 'name': 'Original', 'type': 'relation',
                     'relation': {'database_id': 'origs-db', 'type': 'single_property'}},
        'CreatedAt': {'id': 'a4', 'name': 'CreatedAt', 'type': 'date', 'date': {}},
    }
}


def fake_response(status=200, body=None):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = body if body is not None else {}
    response.text = str(body)
    return response


class TestParseDatabaseSchema:
    """Test cases for turning a database payload into a schema snapshot"""

    def test_kinds_and_options(self):
        view = parse_database_schema('subs-db', DATABASE)

        assert view.kinds() == {
            'Name': 'title', 'Status': 'select', 'Models': 'multi_select',
            'Original': 'relation', 'CreatedAt': 'date'
        }
        assert view.get('Status').options == ('Done',)
        assert view.get('Models').options == ('dehaze', 'superres')
        assert view.get('Original').relation_target == 'origs-db'
        assert view.get('Missing') is None

    def test_empty_payload(self):
        assert parse_database_schema('x', {}).properties == {}


class TestNotionRecordStore:
    """Test cases for the Notion REST client"""

    def setup_method(self):
        self.session = MagicMock(spec=requests.Session)
        self.session.headers = {}
        self.store = NotionRecordStore('secret-token', session=self.session, timeout=5)

    def test_headers(self):
        assert self.session.headers['Authorization'] == 'Bearer secret-token'
        assert self.session.headers['Notion-Version'] == '2022-06-28'

    def test_retrieve_schema(self):
        self.session.request.return_value = fake_response(body=DATABASE)

        view = self.store.retrieve_schema('subs-db')

        self.session.request.assert_called_once_with(
            'GET', 'https://api.notion.com/v1/databases/subs-db', json=None, timeout=5
        )
        assert view.target == 'subs-db'
        assert view.get('Status').kind == 'select'

    def test_update_schema_options_sends_full_domain(self):
        self.session.request.return_value = fake_response(body={'object': 'database'})

        self.store.update_schema_options('subs-db', 'Status', 'select', ['Done', 'Failed'])

        self.session.request.assert_called_once_with(
            'PATCH', 'https://api.notion.com/v1/databases/subs-db',
            json={'properties': {'Status': {'select': {'options': [{'name': 'Done'}, {'name': 'Failed'}]}}}},
            timeout=5
        )

    def test_create_record(self):
        self.session.request.return_value = fake_response(body={'object': 'page', 'id': 'page-1'})
        properties = {'Name': {'title': [{'type': 'text', 'text': {'content': 'summer'}}]}}

        assert self.store.create_record('subs-db', properties) == 'page-1'
        self.session.request.assert_called_once_with(
            'POST', 'https://api.notion.com/v1/pages',
            json={'parent': {'database_id': 'subs-db'}, 'properties': properties},
            timeout=5
        )

    def test_update_record(self):
        self.session.request.return_value = fake_response(body={'object': 'page', 'id': 'page-1'})

        self.store.update_record('page-1', {'Submission': {'relation': [{'id': 'page-2'}]}})

        args, kwargs = self.session.request.call_args
        assert args == ('PATCH', 'https://api.notion.com/v1/pages/page-1')

    def test_api_error(self):
        self.session.request.return_value = fake_response(
            400, {'object': 'error', 'status': 400, 'code': 'validation_error', 'message': 'Status is not a property'}
        )

        with pytest.raises(RecordStoreError) as excinfo:
            self.store.create_record('subs-db', {})
        assert excinfo.value.status == 400
        assert excinfo.value.code == 'validation_error'
        assert 'Status is not a property' in str(excinfo.value)

    def test_transport_error(self):
        self.session.request.side_effect = requests.Timeout('read timed out')

        with pytest.raises(RecordStoreError):
            self.store.retrieve_schema('subs-db')
        assert self.session.request.call_count == 1
