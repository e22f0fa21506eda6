####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

"""Store the API token of each profile outside of the configuration file.

The default backend is the OS keychain reached through :mod:`keyring`. Headless hosts without a
keychain can select a JSON file readable by the owner only, using
``OUTLINECTL_CREDENTIAL_STORE=file``.

A missing secret is returned as None, any other backend failure raises
:class:`CredentialStoreError`.
"""

__all__ = [
    'CredentialStore',
    'KeyringCredentialStore',
    'FileCredentialStore',
    'open_credential_store',
]

####################################################################################################

from pathlib import Path
import json
import logging
import os

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .config import ENV_CREDENTIAL_STORE, SECRETS_JSON, config_path, write_atomic
from .errors import CredentialStoreError

####################################################################################################

_module_logger = logging.getLogger(__name__)

SERVICE_NAME = 'outlinectl'

STORE_HINT = f"Set {ENV_CREDENTIAL_STORE}=file to use a file store, or pass the token with OUTLINE_API_TOKEN"

####################################################################################################

class CredentialStore:

    def get(self, profile: str) -> str | None:
        raise NotImplementedError

    def set(self, profile: str, secret: str) -> None:
        raise NotImplementedError

    def delete(self, profile: str) -> None:
        raise NotImplementedError

####################################################################################################

class KeyringCredentialStore(CredentialStore):

    ##############################################

    def __init__(self, service: str = SERVICE_NAME) -> None:
        self._service = service

    ##############################################

    def get(self, profile: str) -> str | None:
        try:
            return keyring.get_password(self._service, profile)
        except KeyringError as exception:
            raise CredentialStoreError(
                f"Cannot read the credential of profile '{profile}': {exception}",
                hint=STORE_HINT,
            ) from exception

    ##############################################

    def set(self, profile: str, secret: str) -> None:
        try:
            keyring.set_password(self._service, profile, secret)
        except KeyringError as exception:
            raise CredentialStoreError(
                f"Cannot store the credential of profile '{profile}': {exception}",
                hint=STORE_HINT,
            ) from exception

    ##############################################

    def delete(self, profile: str) -> None:
        try:
            keyring.delete_password(self._service, profile)
        except PasswordDeleteError:
            # not found
            _module_logger.debug(f"No credential to delete for profile '{profile}'")
        except KeyringError as exception:
            raise CredentialStoreError(
                f"Cannot delete the credential of profile '{profile}': {exception}",
                hint=STORE_HINT,
            ) from exception

####################################################################################################

class FileCredentialStore(CredentialStore):

    """Secrets in a separate JSON file with 0600 permissions"""

    MODE = 0o600

    ##############################################

    def __init__(self, path: Path | str = None) -> None:
        if path is None:
            path = config_path().joinpath(SECRETS_JSON)
        self._path = Path(path)

    ##############################################

    @property
    def path(self) -> Path:
        return self._path

    ##############################################

    def _load(self) -> dict[str, str]:
        try:
            data = json.loads(self._path.read_text(encoding='utf8'))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exception:
            raise CredentialStoreError(f"Cannot read secrets file {self._path}: {exception}") from exception
        if not isinstance(data, dict):
            raise CredentialStoreError(f"Malformed secrets file {self._path}")
        return data

    def _save(self, secrets: dict[str, str]) -> None:
        try:
            write_atomic(self._path, json.dumps(secrets), mode=self.MODE)
        except OSError as exception:
            raise CredentialStoreError(f"Cannot write secrets file {self._path}: {exception}") from exception

    ##############################################

    def get(self, profile: str) -> str | None:
        return self._load().get(profile)

    def set(self, profile: str, secret: str) -> None:
        secrets = self._load()
        secrets[profile] = secret
        self._save(secrets)

    def delete(self, profile: str) -> None:
        secrets = self._load()
        if secrets.pop(profile, None) is not None:
            self._save(secrets)

####################################################################################################

def open_credential_store(environ: dict = None) -> CredentialStore:
    if environ is None:
        environ = os.environ
    kind = environ.get(ENV_CREDENTIAL_STORE, 'keyring').lower()
    match kind:
        case 'keyring':
            return KeyringCredentialStore()
        case 'file':
            return FileCredentialStore(config_path(environ).joinpath(SECRETS_JSON))
        case _:
            raise CredentialStoreError(
                f"Unknown credential store '{kind}'",
                hint=f"{ENV_CREDENTIAL_STORE} must be 'keyring' or 'file'",
            )
