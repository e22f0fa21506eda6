####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

import pytest

from OutlineTools.DocumentService import DocumentService, sanitize_filename
from OutlineTools.OutlineApi import OutlineApi
from OutlineTools.dedupe import DedupeStore
from OutlineTools.errors import NotFoundError, ValidationError

from conftest import BASE_URL, TOKEN

####################################################################################################

@pytest.fixture
def dedupe_store(tmp_path):
    return DedupeStore(tmp_path.joinpath('dedupe.json'))


@pytest.fixture
def service(server, dedupe_store):
    api = OutlineApi(BASE_URL, token=TOKEN, session=server)
    return DocumentService(api, dedupe_store)

####################################################################################################

class TestCreate:

    def test_same_dedupe_key_creates_one_document(self, server, service):
        first = service.create('T', 'c1', text='body', dedupe_key='k1')
        second = service.create('Other title', 'c1', text='other body', dedupe_key='k1')
        assert first.id == second.id
        assert server.count('documents.create') == 1
        assert len(server.documents) == 1

    def test_dedupe_hit_returns_the_current_remote_state(self, server, service):
        first = service.create('T', 'c1', text='body', dedupe_key='k1')
        server.documents[first.id]['title'] = 'Renamed'
        assert service.create('T', 'c1', dedupe_key='k1').title == 'Renamed'

    def test_distinct_keys_create_distinct_documents(self, server, service):
        a = service.create('T', 'c1', dedupe_key='k1')
        b = service.create('T', 'c1', dedupe_key='k2')
        assert a.id != b.id

    def test_without_key_every_call_creates(self, server, service, dedupe_store):
        service.create('T', 'c1')
        service.create('T', 'c1')
        assert server.count('documents.create') == 2
        assert '' not in dedupe_store

    def test_record_is_persisted(self, service, tmp_path):
        document = service.create('T', 'c1', dedupe_key='k1')
        # a new process sees the record
        assert DedupeStore(tmp_path.joinpath('dedupe.json')).get('k1').documentId == document.id

    def test_dedupe_hit_on_deleted_document(self, server, service):
        document = service.create('T', 'c1', dedupe_key='k1')
        del server.documents[document.id]
        with pytest.raises(NotFoundError):
            service.create('T', 'c1', dedupe_key='k1')
        assert server.count('documents.create') == 1

    def test_failed_create_records_nothing(self, server, service, dedupe_store):
        with pytest.raises(ValidationError):
            # unknown collection, the server answers 400
            service.create('T', 'nope', dedupe_key='k1')
        assert 'k1' not in dedupe_store

    @pytest.mark.parametrize('title, collection_id', [('', 'c1'), ('  ', 'c1'), ('T', None), ('T', '')])
    def test_validation(self, server, service, title, collection_id):
        with pytest.raises(ValidationError):
            service.create(title, collection_id)
        assert server.requests == []

####################################################################################################

class TestReadUpdate:

    def test_get_not_found(self, server, service):
        with pytest.raises(NotFoundError) as info:
            service.get('missing123')
        assert "missing123" in info.value.message
        assert info.value.status_code == 404

    def test_search_requires_a_query(self, server, service):
        with pytest.raises(ValidationError):
            service.search('  ')
        assert server.requests == []

    @pytest.mark.parametrize('limit, offset', [(0, 0), (-1, 0), (10, -1)])
    def test_page_validation(self, service, limit, offset):
        with pytest.raises(ValidationError):
            service.list(limit=limit, offset=offset)

    def test_update_replaces_the_body(self, server, service):
        server.add_document('d1', 'Alpha', text='old')
        _ = service.update('d1', text='new')
        assert _.text == 'new'
        assert server.last.payload == {'id': 'd1', 'text': 'new'}

    def test_update_title_only(self, server, service):
        server.add_document('d1', 'Alpha', text='old')
        assert service.update('d1', title='Beta').title == 'Beta'
        assert server.documents['d1']['text'] == 'old'

    def test_append_reads_then_writes(self, server, service):
        server.add_document('d1', 'Alpha', text='line 1')
        service.update('d1', text='line 2', append=True)
        assert server.documents['d1']['text'] == 'line 1\nline 2'
        assert [_.endpoint for _ in server.requests] == ['documents.info', 'documents.update']

    def test_append_to_empty_document(self, server, service):
        server.add_document('d1', 'Alpha', text='')
        service.update('d1', text='first', append=True)
        assert server.documents['d1']['text'] == 'first'

    def test_update_requires_something(self, server, service):
        with pytest.raises(ValidationError):
            service.update('d1')
        assert server.requests == []

    def test_update_missing_document(self, server, service):
        with pytest.raises(NotFoundError):
            service.update('missing', text='x')

####################################################################################################

class TestExport:

    def test_subtree(self, server, service, tmp_path):
        server.add_document('root', 'Root Doc', text='# Root')
        server.add_document('a', 'Child: One', text='# One', parent='root')
        server.add_document('b', 'Child/Two', text='# Two', parent='root')
        server.add_document('a1', 'Grand', text='# Grand', parent='a')
        output = tmp_path.joinpath('out')

        exported = service.export('root', output, subtree=True)

        assert [_.id for _ in exported] == ['root', 'a', 'a1', 'b']
        assert output.joinpath('Root Doc.md').read_text() == '# Root'
        assert output.joinpath('Root Doc', 'Child_ One.md').read_text() == '# One'
        assert output.joinpath('Root Doc', 'Child_ One', 'Grand.md').read_text() == '# Grand'
        assert output.joinpath('Root Doc', 'Child_Two.md').read_text() == '# Two'

    def test_without_subtree(self, server, service, tmp_path):
        server.add_document('root', 'Root', text='r')
        server.add_document('a', 'Child', parent='root')
        exported = service.export('root', tmp_path)
        assert len(exported) == 1
        assert server.count('documents.list') == 0
        assert not tmp_path.joinpath('Root').exists()

    def test_export_twice_overwrites(self, server, service, tmp_path):
        server.add_document('d1', 'Note', text='v1')
        service.export('d1', tmp_path)
        server.documents['d1']['text'] = 'v2'
        service.export('d1', tmp_path)
        assert [_.name for _ in tmp_path.iterdir()] == ['Note.md']
        assert tmp_path.joinpath('Note.md').read_text() == 'v2'

    def test_children_are_paged_until_a_short_page(self, server, service, tmp_path):
        server.add_document('root', 'Root')
        for i in range(120):
            server.add_document(f'c{i:03}', f'Child {i:03}', parent='root')
        exported = service.export('root', tmp_path, subtree=True)
        assert len(exported) == 121
        offsets = [
            _.payload['offset'] for _ in server.requests
            if _.endpoint == 'documents.list' and _.payload['parentDocumentId'] == 'root'
        ]
        assert offsets == [0, 50, 100]
        assert all(_.payload['limit'] == 50 for _ in server.requests if _.endpoint == 'documents.list')

    def test_cycle_is_exported_once(self, server, service, tmp_path):
        server.add_document('a', 'A', parent='b')
        server.add_document('b', 'B', parent='a')
        exported = service.export('a', tmp_path, subtree=True)
        assert [_.id for _ in exported] == ['a', 'b']

    def test_sibling_titles_giving_the_same_name(self, server, service, tmp_path):
        server.add_document('root', 'Root')
        server.add_document('a', 'Q: A', text='first', parent='root')
        server.add_document('b', 'Q/ A', text='second', parent='root')
        server.add_document('b1', 'Leaf', text='leaf', parent='b')
        exported = service.export('root', tmp_path, subtree=True)
        root = tmp_path.joinpath('Root')
        assert [_.path for _ in exported][1:] == [
            str(root.joinpath('Q_ A.md')),
            str(root.joinpath('Q_ A_2.md')),
            str(root.joinpath('Q_ A_2', 'Leaf.md')),
        ]
        assert root.joinpath('Q_ A.md').read_text() == 'first'
        assert root.joinpath('Q_ A_2.md').read_text() == 'second'
        assert not root.joinpath('Q_ A').exists()

    def test_missing_document(self, service, tmp_path):
        with pytest.raises(NotFoundError):
            service.export('nope', tmp_path.joinpath('out'))
        assert not tmp_path.joinpath('out').exists()

####################################################################################################

@pytest.mark.parametrize('title, filename', [
    ('Plain', 'Plain'),
    ('a/b\\c', 'a_b_c'),
    ('What? <yes>', 'What_ _yes'),
    ('  spaced  ', 'spaced'),
    ('tab\there', 'tab_here'),
    ('???', 'untitled'),
    ('', 'untitled'),
    ('Été 2025', 'Été 2025'),
])
def test_sanitize_filename(title, filename):
    assert sanitize_filename(title) == filename
