####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = [
    'OutlineApi',
    'Collection',
    'Document',
    'SearchResult',
    'Pagination',
    'Listing',
    'extract_error_message',
    'truncate',
]

####################################################################################################

from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urljoin
import json
import logging

import backoff
import requests
from requests.exceptions import InvalidSchema, InvalidURL, MissingSchema

from .errors import (
    ConfigurationError,
    NotFoundError,
    RetryableExhaustedError,
    UnknownError,
    error_for_status,
)

####################################################################################################

_module_logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 4096
ELLIPSIS = '…'

# seconds
MAX_BACKOFF = 30

NOT_CONFIGURED_HINT = "Run 'outlinectl auth login --base-url URL' or set OUTLINE_BASE_URL"

####################################################################################################

def _pick(cls, data: dict) -> dict:
    return {_: data[_] for _ in cls.__dataclass_fields__ if _ in data}

####################################################################################################

@dataclass
class Collection:
    id: str
    name: str = ''
    url: str = None
    description: str = None

    ##############################################

    @classmethod
    def from_json(cls, data: dict) -> 'Collection':
        return cls(**_pick(cls, data))

    def to_json(self) -> dict:
        return {_: getattr(self, _) for _ in self.__dataclass_fields__ if getattr(self, _) is not None}

####################################################################################################

@dataclass
class Document:
    id: str
    title: str = ''
    # markdown body
    text: str = None
    collectionId: str = None
    parentDocumentId: str = None
    createdAt: str = None
    updatedAt: str = None
    # absolute, see OutlineApi._document
    url: str = None

    ##############################################

    @classmethod
    def from_json(cls, data: dict) -> 'Document':
        return cls(**_pick(cls, data))

    def to_json(self) -> dict:
        return {_: getattr(self, _) for _ in self.__dataclass_fields__ if getattr(self, _) is not None}

####################################################################################################

@dataclass
class SearchResult:
    document: Document
    snippet: str = ''
    rankingScore: float = 0.

    ##############################################

    def to_json(self) -> dict:
        return {
            'document': self.document.to_json(),
            'snippet': self.snippet,
            'rankingScore': self.rankingScore,
        }

####################################################################################################

@dataclass
class Pagination:
    limit: int
    offset: int
    nextPath: str = None

####################################################################################################

@dataclass
class Listing:

    """One page of a list endpoint"""

    items: list
    pagination: Pagination

    ##############################################

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    ##############################################

    @property
    def next_offset(self) -> int | None:
        p = self.pagination
        if self.items and (p.nextPath or len(self.items) >= p.limit):
            return p.offset + len(self.items)
        return None

    def pagination_meta(self) -> dict:
        _ = {
            'limit': self.pagination.limit,
            'offset': self.pagination.offset,
        }
        next_offset = self.next_offset
        if next_offset is not None:
            _['nextOffset'] = next_offset
        return _

####################################################################################################

def truncate(text: str, length: int = MAX_BODY_LENGTH) -> str:
    if text is None or len(text) <= length:
        return text
    return text[:length] + ELLIPSIS

####################################################################################################

def extract_error_message(body: str) -> str:
    """Look for a ``message``, then an ``error`` string or ``{message}`` object in a JSON body"""
    if not body or not body.strip():
        return ''
    try:
        data = json.loads(body)
    except ValueError:
        return ''
    if isinstance(data, dict):
        message = data.get('message')
        if isinstance(message, str):
            return message
        error = data.get('error')
        if isinstance(error, str):
            return error
        if isinstance(error, dict) and isinstance(error.get('message'), str):
            return error['message']
    return ''

####################################################################################################

class TransientError(Exception):

    """429, 5xx or transport failure, retried by _post"""

    def __init__(self, message: str, status_code: int = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

####################################################################################################

class OutlineApi:

    """Client of the Outline HTTP API.

    Every call is a POST of a JSON object to ``<base_url>/api/<endpoint>`` answered by
    ``{data, pagination?}``. Failures are raised as classified :class:`OutlineError`.
    """

    ##############################################

    def __init__(
            self,
            base_url: str | None,
            token: str | None = None,
            timeout: float = 30,
            max_retries: int = 3,
            session: requests.Session = None,
    ) -> None:
        self._base_url = base_url.rstrip('/') if base_url else None
        self._token = token
        self._timeout = timeout
        self._max_retries = max(0, int(max_retries))
        self._session = session if session is not None else requests.Session()

    ##############################################

    def _headers(self) -> dict:
        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        # without a token the server answers 401, classified as AuthError
        if self._token:
            headers['Authorization'] = f'Bearer {self._token}'
        return headers

    ##############################################

    def _url(self, endpoint: str) -> str:
        if not self._base_url:
            raise ConfigurationError(
                "No Outline base URL configured",
                hint=NOT_CONFIGURED_HINT,
            )
        return f'{self._base_url}/api/{endpoint}'

    ##############################################

    @staticmethod
    def _describe_failure(method: str, path: str, response: requests.Response) -> str:
        try:
            body = response.text
        except (UnicodeDecodeError, requests.RequestException):
            body = ''
        snippet = truncate(extract_error_message(body) or body)
        message = f"Outline API request failed: {method} {path} -> {response.status_code} {response.reason or ''}".rstrip()
        message += '.'
        if snippet and snippet.strip():
            message += f" Body: {snippet}"
        return message

    ##############################################

    def _send(self, endpoint: str, payload: dict) -> dict:
        url = self._url(endpoint)
        path = f'/api/{endpoint}'
        _module_logger.debug(f"POST {path}")
        try:
            response = self._session.post(url, json=payload, headers=self._headers(), timeout=self._timeout)
        except (MissingSchema, InvalidSchema, InvalidURL) as exception:
            raise ConfigurationError(
                f"Invalid Outline base URL '{self._base_url}': {exception}",
                hint=NOT_CONFIGURED_HINT,
            ) from exception
        except (requests.ConnectionError, requests.Timeout) as exception:
            raise TransientError(f"Outline API request failed: POST {path} -> {exception.__class__.__name__}: {exception}")
        except requests.RequestException as exception:
            # the message of e.g. InvalidHeader quotes the header values, including the token
            raise UnknownError(
                f"Outline API request failed: POST {path} -> {exception.__class__.__name__}",
                hint="Check the token and the base URL",
            ) from exception
        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientError(self._describe_failure('POST', path, response), status)
        if not 200 <= status < 300:
            raise error_for_status(status, self._describe_failure('POST', path, response))
        try:
            data = response.json()
        except ValueError as exception:
            raise UnknownError(f"Outline API returned a non JSON response: POST {path} -> {status}") from exception
        if not isinstance(data, dict):
            raise UnknownError(f"Outline API returned an unexpected response: POST {path} -> {status}")
        return data

    ##############################################

    @staticmethod
    def _on_backoff(details: dict) -> None:
        exception = details['exception']
        _module_logger.warning(
            f"Transient failure, retry {details['tries']} in {details['wait']:.1f}s: {exception.message}"
        )

    def _post(self, endpoint: str, payload: dict) -> dict:
        # clean None values: the server rejects null for optional parameters
        payload = {key: value for key, value in payload.items() if value is not None}
        send = backoff.on_exception(
            backoff.expo,
            TransientError,
            max_tries=self._max_retries + 1,
            jitter=backoff.full_jitter,
            on_backoff=self._on_backoff,
            logger=None,
            max_value=MAX_BACKOFF,
        )(self._send)
        try:
            return send(endpoint, payload)
        except TransientError as exception:
            attempts = self._max_retries + 1
            raise RetryableExhaustedError(
                f"{exception.message} (gave up after {attempts} attempt{'s' if attempts > 1 else ''})",
                hint="The server is rate limiting or unavailable, retry later or raise --max-retries",
                status_code=exception.status_code,
            ) from exception

    ##############################################

    def _listing(self, data: dict, limit: int, offset: int, factory: Callable[[dict], Any]) -> Listing:
        items = [factory(_) for _ in data.get('data') or ()]
        p = data.get('pagination') or {}
        pagination = Pagination(
            limit=p.get('limit', limit),
            offset=p.get('offset', offset),
            nextPath=p.get('nextPath'),
        )
        return Listing(items=items, pagination=pagination)

    ##############################################

    def _document(self, data: dict) -> Document:
        document = Document.from_json(data)
        if document.url and self._base_url:
            document.url = urljoin(self._base_url + '/', document.url.lstrip('/'))
        return document

    def _search_result(self, data: dict) -> SearchResult:
        return SearchResult(
            document=self._document(data.get('document') or {'id': ''}),
            snippet=data.get('context') or '',
            rankingScore=float(data.get('ranking') or 0),
        )

    ############################################################################
    #
    # Auth
    #

    def auth_info(self) -> dict:
        data = self._post('auth.info', {})
        return data.get('data') or {}

    ############################################################################
    #
    # Collection
    #

    def list_collections(self, limit: int = 10, offset: int = 0) -> Listing:
        data = self._post('collections.list', {'limit': limit, 'offset': offset})
        return self._listing(data, limit, offset, Collection.from_json)

    ############################################################################
    #
    # Document
    #

    def search_documents(
            self,
            query: str,
            collection_id: str = None,
            parent_id: str = None,
            limit: int = 10,
            offset: int = 0,
            include_archived: bool = False,
    ) -> Listing:
        payload = {
            'query': query,
            'collectionId': collection_id,
            'parentDocumentId': parent_id,
            'limit': limit,
            'offset': offset,
            'includeArchived': include_archived,
        }
        data = self._post('documents.search', payload)
        return self._listing(data, limit, offset, self._search_result)

    ##############################################

    def document_info(self, id: str) -> Document:
        data = self._post('documents.info', {'id': id})
        _ = data.get('data')
        if not _:
            raise NotFoundError(f"Document '{id}' not found", status_code=404)
        return self._document(_)

    ##############################################

    def create_document(
            self,
            title: str,
            collection_id: str,
            text: str = None,
            parent_id: str = None,
            publish: bool = True,
    ) -> Document:
        payload = {
            'title': title,
            'collectionId': collection_id,
            'text': text,
            'parentDocumentId': parent_id,
            'publish': publish,
        }
        data = self._post('documents.create', payload)
        _ = data.get('data')
        if not _:
            raise UnknownError("Outline API returned no document for documents.create")
        return self._document(_)

    ##############################################

    def update_document(self, id: str, title: str = None, text: str = None) -> Document:
        payload = {
            'id': id,
            'title': title,
            'text': text,
        }
        data = self._post('documents.update', payload)
        _ = data.get('data')
        if not _:
            raise UnknownError("Outline API returned no document for documents.update")
        return self._document(_)

    ##############################################

    def list_documents(
            self,
            collection_id: str = None,
            parent_id: str = None,
            limit: int = 25,
            offset: int = 0,
    ) -> Listing:
        payload = {
            'collectionId': collection_id,
            'parentDocumentId': parent_id,
            'limit': limit,
            'offset': offset,
        }
        data = self._post('documents.list', payload)
        return self._listing(data, limit, offset, self._document)
