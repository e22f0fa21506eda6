####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

from pathlib import Path
import io
import json

import pytest

from OutlineTools.OutlineApi import Document
from OutlineTools.date import iso2str
from OutlineTools.errors import NotFoundError
from OutlineTools.printer import OutputFormatter, html_escape, make_meta, to_jsonable
from OutlineTools.version import __version__

####################################################################################################

@pytest.fixture
def streams():
    return io.StringIO(), io.StringIO()


@pytest.fixture
def formatter(streams):
    stdout, stderr = streams
    return OutputFormatter(stdout=stdout, stderr=stderr)

####################################################################################################

class TestJson:

    def test_result_envelope(self, formatter, streams):
        formatter.configure(json=True)
        formatter.write_result([Document(id='d1', title='A')], 'docs.list', make_meta(12, {'limit': 1, 'offset': 0}))
        stdout, stderr = streams
        [line] = stdout.getvalue().splitlines()
        assert json.loads(line) == {
            'ok': True,
            'command': 'docs.list',
            'data': [{'id': 'd1', 'title': 'A'}],
            'meta': {'durationMs': 12, 'version': __version__, 'pagination': {'limit': 1, 'offset': 0}},
        }
        assert stderr.getvalue() == ''

    def test_error_envelope(self, formatter, streams):
        formatter.configure(json=True)
        formatter.write_error(NotFoundError("Document 'x' not found", hint="search first"), 'docs.get')
        [line] = streams[0].getvalue().splitlines()
        _ = json.loads(line)
        assert _['ok'] is False
        assert 'data' not in _
        assert _['error'] == {'code': 'NOT_FOUND', 'message': "Document 'x' not found", 'hint': "search first"}
        assert _['meta']['version'] == __version__

    def test_string_data_is_kept_in_the_envelope(self, formatter, streams):
        formatter.configure(json=True)
        formatter.write_result('# Title\n', 'docs.get')
        assert json.loads(streams[0].getvalue())['data'] == '# Title\n'

    def test_quiet_drops_results_not_errors(self, formatter, streams):
        formatter.configure(json=True, quiet=True)
        formatter.write_result({'a': 1}, 'x')
        assert streams[0].getvalue() == ''
        formatter.write_error(NotFoundError("gone"), 'x')
        assert json.loads(streams[0].getvalue())['error']['code'] == 'NOT_FOUND'

####################################################################################################

class TestHuman:

    def test_string_is_verbatim(self, formatter, streams):
        formatter.write_result('# Title\n\n<b>body</b> & more\n', 'docs.get')
        assert streams[0].getvalue() == '# Title\n\n<b>body</b> & more\n'

    def test_render_callback(self, formatter, streams):
        def render(data, print):
            for _ in data:
                print(f"<green>{_}</green> &amp; done")
        formatter.write_result(['a', 'b'], 'x', render=render)
        assert streams[0].getvalue() == 'a & done\nb & done\n'

    def test_yaml_fallback(self, formatter, streams):
        formatter.write_result({'profile': 'default', 'files': [Path('a.md')]}, 'x')
        assert streams[0].getvalue() == 'profile: default\nfiles:\n- a.md\n'

    def test_error_on_stderr(self, formatter, streams):
        formatter.write_error(NotFoundError("Document <x> not found", hint="check the id"), 'docs.get')
        stdout, stderr = streams
        assert stdout.getvalue() == ''
        assert stderr.getvalue() == 'Error: Document <x> not found\nHint: check the id\n'

    def test_quiet(self, formatter, streams):
        formatter.configure(quiet=True)
        formatter.write_result('body', 'docs.get')
        formatter.write_error(NotFoundError("gone"), 'docs.get')
        assert streams[0].getvalue() == ''
        assert 'Error: gone' in streams[1].getvalue()

####################################################################################################

def test_to_jsonable():
    document = Document(id='d1', title='T', text=None)
    assert to_jsonable({'d': document, 't': (1, 2)}) == {'d': {'id': 'd1', 'title': 'T'}, 't': [1, 2]}


def test_iso2str():
    assert iso2str('2025-01-02T03:04:05.000Z', local=False) == '2025/01/02 03:04:05'
    assert iso2str('yesterday') == 'yesterday'
    assert iso2str(None) == ''


def test_html_escape_drops_xml_invalid_characters():
    assert html_escape('a < b & "c"') == 'a &lt; b &amp; &quot;c&quot;'
    assert html_escape('Bad\x0btitle\x1b[0m\x00') == 'Bad title [0m '
    assert html_escape('tab\tand\nline') == 'tab\tand\nline'
