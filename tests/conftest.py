####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

"""Shared fixtures: an in-memory Outline server behind a fake requests session, and an in-memory
credential store. No network, no keychain.
"""

from dataclasses import dataclass
from http import HTTPStatus
import io
import json
import time

import pytest
import requests

from OutlineTools.Cli import Cli
from OutlineTools.config import ENV_CONFIG_DIR
from OutlineTools.credentials import CredentialStore

####################################################################################################

BASE_URL = 'https://wiki.example.com'
TOKEN = 'ol_api_secret_token'
TIMESTAMP = '2025-01-02T03:04:05.000Z'

####################################################################################################

def make_response(status: int = 200, data=None, body: str = None, pagination: dict = None, reason: str = None):
    """Build a real requests.Response"""
    response = requests.Response()
    response.status_code = status
    if reason is None:
        try:
            reason = HTTPStatus(status).phrase
        except ValueError:
            reason = ''
    response.reason = reason
    if body is None:
        payload = {'data': data}
        if pagination is not None:
            payload['pagination'] = pagination
        body = json.dumps(payload)
    response._content = body.encode('utf8')
    response.encoding = 'utf8'
    response.headers['Content-Type'] = 'application/json'
    return response


def error_response(status: int, message: str):
    return make_response(status, body=json.dumps({'ok': False, 'error': 'error', 'message': message}))

####################################################################################################

@dataclass
class Request:
    url: str
    endpoint: str
    payload: dict
    headers: dict
    timeout: float


class FakeSession:
    """Stand-in for requests.Session.

    Queued responses are consumed first, then the endpoint handler answers. An item may be an
    exception instance, which is raised.
    """

    def __init__(self):
        self.requests = []
        self._handlers = {}
        self._queues = {}

    def on(self, endpoint, handler):
        self._handlers[endpoint] = handler

    def queue(self, endpoint, *responses):
        self._queues.setdefault(endpoint, []).extend(responses)

    def post(self, url, json=None, headers=None, timeout=None):
        endpoint = url.split('/api/', 1)[1]
        request = Request(url=url, endpoint=endpoint, payload=json, headers=headers or {}, timeout=timeout)
        self.requests.append(request)
        queue = self._queues.get(endpoint)
        if queue:
            response = queue.pop(0)
        elif endpoint in self._handlers:
            response = self._handlers[endpoint](request)
        else:
            response = error_response(404, f"Unknown endpoint {endpoint}")
        if isinstance(response, BaseException):
            raise response
        return response

    def count(self, endpoint):
        return sum(1 for _ in self.requests if _.endpoint == endpoint)

    @property
    def last(self):
        return self.requests[-1]

####################################################################################################

class OutlineServer(FakeSession):
    """A tiny Outline: collections, documents and their tree"""

    def __init__(self):
        super().__init__()
        self.collections = [
            {'id': 'c1', 'name': 'Engineering', 'url': '/collection/engineering'},
            {'id': 'c2', 'name': 'Handbook', 'url': '/collection/handbook'},
        ]
        # insertion order is the page order
        self.documents = {}
        self._counter = 0
        self.on('auth.info', self._auth_info)
        self.on('collections.list', self._collections_list)
        self.on('documents.info', self._documents_info)
        self.on('documents.list', self._documents_list)
        self.on('documents.search', self._documents_search)
        self.on('documents.create', self._documents_create)
        self.on('documents.update', self._documents_update)

    ##############################################

    def add_document(self, id, title, text='', parent=None, collection='c1'):
        document = {
            'id': id,
            'title': title,
            'text': text,
            'collectionId': collection,
            'parentDocumentId': parent,
            'createdAt': TIMESTAMP,
            'updatedAt': TIMESTAMP,
            'url': f'/doc/{id}',
        }
        self.documents[id] = document
        return document

    ##############################################

    @staticmethod
    def _page(items, payload):
        limit = payload.get('limit', 25)
        offset = payload.get('offset', 0)
        page = items[offset:offset + limit]
        pagination = {'limit': limit, 'offset': offset}
        if offset + limit < len(items):
            pagination['nextPath'] = f'/api/next?limit={limit}&offset={offset + limit}'
        return make_response(200, page, pagination=pagination)

    def on(self, endpoint, handler):
        def authorized(request):
            if request.headers.get('Authorization') != f'Bearer {TOKEN}':
                return error_response(401, "Authentication required")
            return handler(request)
        super().on(endpoint, authorized)

    def _auth_info(self, request):
        return make_response(200, {'user': {'id': 'u1', 'name': 'Ada'}, 'team': {'id': 't1', 'name': 'Acme'}})

    def _collections_list(self, request):
        return self._page(self.collections, request.payload)

    def _documents_info(self, request):
        document = self.documents.get(request.payload.get('id'))
        if document is None:
            return error_response(404, "Document not found")
        return make_response(200, document)

    def _documents_list(self, request):
        payload = request.payload
        items = [
            _ for _ in self.documents.values()
            if _['parentDocumentId'] == payload.get('parentDocumentId')
            and (not payload.get('collectionId') or _['collectionId'] == payload['collectionId'])
        ]
        return self._page(items, payload)

    def _documents_search(self, request):
        query = request.payload['query'].lower()
        items = [
            {'ranking': 0.9, 'context': _['text'][:40], 'document': _}
            for _ in self.documents.values()
            if query in _['title'].lower() or query in _['text'].lower()
        ]
        return self._page(items, request.payload)

    def _documents_create(self, request):
        payload = request.payload
        if payload.get('collectionId') not in [_['id'] for _ in self.collections]:
            return error_response(400, "collectionId: Invalid collection")
        self._counter += 1
        document = self.add_document(
            f'new-{self._counter}',
            payload['title'],
            text=payload.get('text', ''),
            parent=payload.get('parentDocumentId'),
            collection=payload['collectionId'],
        )
        return make_response(200, document)

    def _documents_update(self, request):
        payload = request.payload
        document = self.documents.get(payload['id'])
        if document is None:
            return error_response(404, "Document not found")
        for key in ('title', 'text'):
            if key in payload:
                document[key] = payload[key]
        return make_response(200, document)

####################################################################################################

class MemoryCredentialStore(CredentialStore):

    def __init__(self, secrets=None):
        self.secrets = dict(secrets or {})

    def get(self, profile):
        return self.secrets.get(profile)

    def set(self, profile, secret):
        self.secrets[profile] = secret

    def delete(self, profile):
        self.secrets.pop(profile, None)


class FakePromptSession:

    def __init__(self, lines):
        self.lines = list(lines)

    def prompt(self, *args, **kwargs):
        if not self.lines:
            raise EOFError
        return self.lines.pop(0)

####################################################################################################

class Runner:
    """Run the CLI in process and capture its streams"""

    def __init__(self, environ, session, credential_store, prompt_session=None):
        self.stdin = io.StringIO()
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()
        self.cli = Cli(
            session=session,
            credential_store=credential_store,
            environ=environ,
            stdin=self.stdin,
            stdout=self.stdout,
            stderr=self.stderr,
            prompt_session=prompt_session,
        )

    def __call__(self, *argv, stdin=None):
        for _ in (self.stdout, self.stderr):
            _.seek(0)
            _.truncate()
        if stdin is not None:
            self.stdin.seek(0)
            self.stdin.truncate()
            self.stdin.write(stdin)
            self.stdin.seek(0)
        return self.cli.run(list(argv))

    @property
    def output(self):
        return self.stdout.getvalue()

    @property
    def errors(self):
        return self.stderr.getvalue()

    def envelope(self):
        lines = self.output.splitlines()
        assert len(lines) == 1, self.output
        return json.loads(lines[0])

####################################################################################################

@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Back-off waits are recorded instead of slept"""
    waits = []
    monkeypatch.setattr(time, 'sleep', waits.append)
    return waits


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path.joinpath('config')


@pytest.fixture
def environ(config_dir):
    return {ENV_CONFIG_DIR: str(config_dir)}


@pytest.fixture
def server():
    return OutlineServer()


@pytest.fixture
def credential_store():
    return MemoryCredentialStore()


@pytest.fixture
def run(environ, server, credential_store):
    return Runner(environ, server, credential_store)


@pytest.fixture
def logged_in(run):
    assert run('auth', 'login', '--base-url', BASE_URL, '--token', TOKEN) == 0
    return run
