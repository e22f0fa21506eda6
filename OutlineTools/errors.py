####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = [
    'EXIT_OK',
    'OutlineError',
    'ValidationError',
    'AuthError',
    'ConfigurationError',
    'NotFoundError',
    'ConflictError',
    'RetryableExhaustedError',
    'UnknownError',
    'CredentialStoreError',
    'CancelledError',
    'error_for_status',
]

####################################################################################################

EXIT_OK = 0

####################################################################################################

class OutlineError(Exception):

    """Base class of the classified failures.

    Each subclass maps to one exit code and one stable error code used in the JSON envelope.
    """

    CODE = 'UNKNOWN_ERROR'
    EXIT_CODE = 10

    ##############################################

    def __init__(self, message: str, hint: str = None, status_code: int = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.status_code = status_code

    ##############################################

    @property
    def code(self) -> str:
        return self.CODE

    @property
    def exit_code(self) -> int:
        return self.EXIT_CODE

    ##############################################

    def to_json(self) -> dict:
        _ = {
            'code': self.code,
            'message': self.message,
        }
        if self.hint:
            _['hint'] = self.hint
        return _

####################################################################################################

class ValidationError(OutlineError):
    CODE = 'VALIDATION_ERROR'
    EXIT_CODE = 2

class AuthError(OutlineError):
    CODE = 'AUTH_ERROR'
    EXIT_CODE = 3

class ConfigurationError(AuthError):
    """No usable profile or base URL: the request is never sent"""
    CODE = 'NOT_CONFIGURED'

class NotFoundError(OutlineError):
    CODE = 'NOT_FOUND'
    EXIT_CODE = 4

class ConflictError(OutlineError):
    CODE = 'CONFLICT'
    EXIT_CODE = 5

class RetryableExhaustedError(OutlineError):
    CODE = 'RETRY_EXHAUSTED'
    EXIT_CODE = 6

class UnknownError(OutlineError):
    pass

class CredentialStoreError(UnknownError):
    CODE = 'CREDENTIAL_STORE_ERROR'

class CancelledError(OutlineError):
    CODE = 'CANCELLED'
    EXIT_CODE = 130

####################################################################################################

def error_for_status(status_code: int, message: str, hint: str = None) -> OutlineError:
    """Classify a non transient HTTP failure"""
    match status_code:
        case 400 | 422:
            cls = ValidationError
        case 401 | 403:
            cls = AuthError
            if hint is None:
                hint = "Check the API token, or run 'outlinectl auth login'"
        case 404:
            cls = NotFoundError
        case 409:
            cls = ConflictError
        case _:
            cls = UnknownError
    return cls(message, hint=hint, status_code=status_code)
