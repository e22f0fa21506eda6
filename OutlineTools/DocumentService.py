####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = ['DocumentService', 'ExportedFile', 'sanitize_filename']

####################################################################################################

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator
import logging
import re

from .OutlineApi import OutlineApi, Document, Listing
from .dedupe import DedupeStore
from .errors import NotFoundError, ValidationError

####################################################################################################

_module_logger = logging.getLogger(__name__)

EXPORT_PAGE_SIZE = 50
MARKDOWN_EXTENSION = '.md'

# Windows reserved characters and control characters
INVALID_FILENAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]+')

####################################################################################################

def sanitize_filename(title: str) -> str:
    """Turn a document title into a file name valid on every platform"""
    parts = [_ for _ in INVALID_FILENAME_RE.split(title or '') if _]
    _ = '_'.join(parts).strip().rstrip('.')
    return _ or 'untitled'

####################################################################################################

@dataclass
class ExportedFile:
    id: str
    title: str
    path: str

    def to_json(self) -> dict:
        return {'id': self.id, 'title': self.title, 'path': self.path}

####################################################################################################

class DocumentService:

    ##############################################

    def __init__(self, api: OutlineApi, dedupe_store: DedupeStore) -> None:
        self._api = api
        self._dedupe_store = dedupe_store

    ##############################################

    @staticmethod
    def _check_page(limit: int, offset: int) -> None:
        if limit is None or limit < 1:
            raise ValidationError(f"--limit must be a positive integer, got {limit}")
        if offset is None or offset < 0:
            raise ValidationError(f"--offset must be >= 0, got {offset}")

    ############################################################################

    def search(
            self,
            query: str,
            collection_id: str = None,
            parent_id: str = None,
            limit: int = 10,
            offset: int = 0,
            include_archived: bool = False,
    ) -> Listing:
        if not query or not query.strip():
            raise ValidationError("A non empty search query is required", hint="Use --query TEXT")
        self._check_page(limit, offset)
        return self._api.search_documents(
            query,
            collection_id=collection_id,
            parent_id=parent_id,
            limit=limit,
            offset=offset,
            include_archived=include_archived,
        )

    ##############################################

    def list(self, collection_id: str = None, parent_id: str = None, limit: int = 25, offset: int = 0) -> Listing:
        self._check_page(limit, offset)
        return self._api.list_documents(collection_id, parent_id, limit=limit, offset=offset)

    ##############################################

    def get(self, id: str) -> Document:
        if not id:
            raise ValidationError("A document id is required")
        try:
            return self._api.document_info(id)
        except NotFoundError as exception:
            raise NotFoundError(
                f"Document '{id}' not found",
                hint="Check the id, or search with 'outlinectl docs search --query TEXT'",
                status_code=exception.status_code,
            ) from exception

    ############################################################################

    def create(
            self,
            title: str,
            collection_id: str,
            text: str = None,
            parent_id: str = None,
            dedupe_key: str = None,
    ) -> Document:
        """Create and publish a document.

        With a dedupe key, at most one document is created per key: a known key returns the
        current state of the document created the first time. The remote creation and the local
        record are not atomic, a crash in between leaves a document without record.
        """
        if not title or not title.strip():
            raise ValidationError("A non empty title is required", hint="Use --title TEXT")
        if not collection_id:
            raise ValidationError(
                "A collection id is required",
                hint="Use --collection-id ID or set OUTLINE_COLLECTION_ID",
            )

        if dedupe_key:
            entry = self._dedupe_store.get(dedupe_key)
            if entry is not None:
                _module_logger.info(f"Dedupe key '{dedupe_key}' already used by document {entry.documentId}")
                return self.get(entry.documentId)

        document = self._api.create_document(
            title=title,
            collection_id=collection_id,
            text=text,
            parent_id=parent_id,
            publish=True,
        )

        if dedupe_key:
            self._dedupe_store.record(dedupe_key, document.id)
        return document

    ##############################################

    def update(self, id: str, title: str = None, text: str = None, append: bool = False) -> Document:
        """Update a document, the text replaces the body.

        *append* is done on the client: the current body is fetched and the new text concatenated
        before a full update.
        """
        if not id:
            raise ValidationError("A document id is required")
        if title is None and text is None:
            raise ValidationError("Nothing to update", hint="Give --title and/or --text, --file, --stdin")
        if append:
            if text is None:
                raise ValidationError("--append requires a text", hint="Use --text, --file or --stdin")
            current = self.get(id).text or ''
            if current and not current.endswith('\n'):
                current += '\n'
            text = current + text
        try:
            return self._api.update_document(id, title=title, text=text)
        except NotFoundError as exception:
            raise NotFoundError(f"Document '{id}' not found", status_code=exception.status_code) from exception

    ############################################################################
    #
    # Export
    #

    def children(self, document: Document) -> Iterator[Document]:
        """Yield the child documents in the page order of the server"""
        offset = 0
        while True:
            listing = self._api.list_documents(
                collection_id=document.collectionId,
                parent_id=document.id,
                limit=EXPORT_PAGE_SIZE,
                offset=offset,
            )
            yield from listing
            # a short page is the last one
            if len(listing) < EXPORT_PAGE_SIZE:
                break
            offset += EXPORT_PAGE_SIZE

    ##############################################

    def export(self, id: str, output_dir: Path | str, subtree: bool = False) -> 'list[ExportedFile]':
        """Write a document as ``<output_dir>/<title>.md``, existing files are overwritten.

        With *subtree*, the children are exported in ``<output_dir>/<title>/``, recursively. Siblings
        whose titles give the same file name are written as ``<title>_2.md``, ``<title>_3.md``, ...
        """
        exported = []
        self._export(id, Path(output_dir), subtree, exported, visited=set(), written=set())
        return exported

    @staticmethod
    def _unique_name(output_dir: Path, name: str, written: set) -> str:
        _ = name
        index = 1
        while output_dir.joinpath(_ + MARKDOWN_EXTENSION) in written:
            index += 1
            _ = f'{name}_{index}'
        if _ != name:
            _module_logger.warning(f"{output_dir.joinpath(name + MARKDOWN_EXTENSION)} already written, use {_}")
        return _

    def _export(
            self,
            id: str,
            output_dir: Path,
            subtree: bool,
            exported: 'list[ExportedFile]',
            visited: set,
            written: set,
    ) -> None:
        if id in visited:
            _module_logger.warning(f"Document {id} already exported, skipped")
            return
        visited.add(id)

        document = self.get(id)
        name = self._unique_name(output_dir, sanitize_filename(document.title), written)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir.joinpath(name + MARKDOWN_EXTENSION)
        path.write_text(document.text or '', encoding='utf8')
        written.add(path)
        _module_logger.info(f"Wrote {path}")
        exported.append(ExportedFile(id=document.id, title=document.title, path=str(path)))

        if subtree:
            child_dir = output_dir.joinpath(name)
            # children are listed before the recursion
            for child in list(self.children(document)):
                self._export(child.id, child_dir, subtree, exported, visited, written)
