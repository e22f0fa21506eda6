####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = ['DedupeEntry', 'DedupeStore']

####################################################################################################

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
import json
import logging

from .config import DEDUPE_JSON, config_path, write_atomic
from .errors import UnknownError

####################################################################################################

_module_logger = logging.getLogger(__name__)

####################################################################################################

@dataclass(frozen=True)
class DedupeEntry:
    dedupeKey: str
    documentId: str
    createdAt: str = None

####################################################################################################

class DedupeStore:

    """Idempotency records of document creation, one per dedupe key.

    Records are written once and never modified. The file is local to the machine.
    """

    VERSION = 1

    ##############################################

    def __init__(self, path: Path | str = None) -> None:
        if path is None:
            path = config_path().joinpath(DEDUPE_JSON)
        self._path = Path(path)

    ##############################################

    @property
    def path(self) -> Path:
        return self._path

    ##############################################

    def _load(self) -> dict[str, dict]:
        try:
            data = json.loads(self._path.read_text(encoding='utf8'))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exception:
            # an emptied store would allow duplicates
            raise UnknownError(
                f"Cannot read dedupe store {self._path}: {exception}",
                hint="Fix or remove the file; removing it forgets every dedupe key",
            ) from exception
        entries = data.get('entries') if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            raise UnknownError(f"Malformed dedupe store {self._path}")
        return entries

    ##############################################

    def get(self, key: str) -> DedupeEntry | None:
        _ = self._load().get(key)
        if _ is None:
            return None
        return DedupeEntry(dedupeKey=key, documentId=_['documentId'], createdAt=_.get('createdAt'))

    def __contains__(self, key: str) -> bool:
        return key in self._load()

    ##############################################

    def record(self, key: str, document_id: str) -> DedupeEntry:
        entries = self._load()
        if key in entries:
            _ = entries[key]
            return DedupeEntry(dedupeKey=key, documentId=_['documentId'], createdAt=_.get('createdAt'))
        created_at = datetime.now(timezone.utc).isoformat()
        entries[key] = {'documentId': document_id, 'createdAt': created_at}
        data = {'version': self.VERSION, 'entries': entries}
        write_atomic(self._path, json.dumps(data, indent=2))
        _module_logger.info(f"Recorded dedupe key '{key}' -> {document_id}")
        return DedupeEntry(dedupeKey=key, documentId=document_id, createdAt=created_at)
