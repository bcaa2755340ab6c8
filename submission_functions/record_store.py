"""Record store client and the schema snapshot it returns.

The record store is a Notion workspace: each ledger is a database whose
properties are edited by operators, so the schema is fetched per call.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import requests

from submission_functions.exceptions import RecordStoreError

logger = logging.getLogger(__name__)

NOTION_API_BASE = 'https://api.notion.com/v1'
NOTION_VERSION = '2022-06-28'

CHOICE_KINDS = ('select', 'multi_select', 'status')


@dataclass(frozen=True)
class PropertySpec:
    name: str
    kind: str
    options: tuple = ()
    relation_target: Optional[str] = None


@dataclass
class SchemaView:
    """Snapshot of one ledger's live properties"""
    target: str
    properties: Dict[str, PropertySpec] = field(default_factory=dict)

    def get(self, name: str) -> Optional[PropertySpec]:
        return self.properties.get(name)

    def kinds(self) -> Dict[str, str]:
        return {name: spec.kind for name, spec in self.properties.items()}

    def with_options(self, name: str, options: Iterable[str]) -> 'SchemaView':
        spec = self.properties[name]
        updated = dict(self.properties)
        updated[name] = PropertySpec(spec.name, spec.kind, tuple(options), spec.relation_target)
        return SchemaView(self.target, updated)


class RecordStore(ABC):
    """What the metadata recorder needs from a record store"""

    @abstractmethod
    def retrieve_schema(self, target: str) -> SchemaView:
        pass

    @abstractmethod
    def update_schema_options(self, target: str, property_name: str, kind: str,
                              option_names: List[str]) -> None:
        """Replace the option domain of a choice property with ``option_names``"""

    @abstractmethod
    def create_record(self, target: str, properties: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    def update_record(self, record_id: str, properties: Dict[str, Any]) -> None:
        pass


def parse_database_schema(target: str, payload: Dict[str, Any]) -> SchemaView:
    properties = {}
    for name, raw in (payload.get('properties') or {}).items():
        kind = raw.get('type', 'unknown')
        options = ()
        relation_target = None
        if kind in CHOICE_KINDS:
            options = tuple(opt.get('name') for opt in (raw.get(kind) or {}).get('options', []) if opt.get('name'))
        elif kind == 'relation':
            relation_target = (raw.get('relation') or {}).get('database_id')
        properties[name] = PropertySpec(name, kind, options, relation_target)
    return SchemaView(target, properties)


class NotionRecordStore(RecordStore):
    """Notion REST API over a requests session; one bounded request per call"""

    def __init__(self, token: str, session: Optional[requests.Session] = None,
                 timeout: float = 10.0, api_base: str = NOTION_API_BASE):
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f"Bearer {token}",
            'Notion-Version': NOTION_VERSION,
            'Content-Type': 'application/json'
        })
        self.timeout = timeout
        self.api_base = api_base.rstrip('/')

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.api_base}/{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise RecordStoreError(f"{method} {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not response.ok:
            raise RecordStoreError(
                f"{method} {path} returned {response.status_code}: {body.get('message', response.text)}",
                status=response.status_code,
                code=body.get('code')
            )
        return body

    def retrieve_schema(self, target: str) -> SchemaView:
        return parse_database_schema(target, self._request('GET', f"databases/{target}"))

    def update_schema_options(self, target: str, property_name: str, kind: str,
                              option_names: List[str]) -> None:
        payload = {'properties': {property_name: {kind: {'options': [{'name': n} for n in option_names]}}}}
        self._request('PATCH', f"databases/{target}", payload)

    def create_record(self, target: str, properties: Dict[str, Any]) -> str:
        body = self._request('POST', 'pages', {'parent': {'database_id': target}, 'properties': properties})
        return body.get('id', '')

    def update_record(self, record_id: str, properties: Dict[str, Any]) -> None:
        self._request('PATCH', f"pages/{record_id}", {'properties': properties})
