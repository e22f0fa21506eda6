####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = ['AuthService']

####################################################################################################

import logging
import math

from .config import (
    DEFAULT_PROFILE,
    Config, ConfigStore, GlobalOptions, Settings,
    clean_token, resolve_settings, strip_url,
)
from .credentials import CredentialStore
from .errors import AuthError, ValidationError

####################################################################################################

_module_logger = logging.getLogger(__name__)

####################################################################################################

class AuthService:

    """Profiles and tokens.

    The profile lives in the config file, the token in the credential store. Logout removes the
    token and keeps the profile.
    """

    ##############################################

    def __init__(self, config_store: ConfigStore, credential_store: CredentialStore, environ: dict = None) -> None:
        self._config_store = config_store
        self._credential_store = credential_store
        self._environ = environ

    ##############################################

    def load_config(self) -> Config:
        return self._config_store.load()

    def current_profile_name(self) -> str:
        return self.load_config().currentProfile

    ##############################################

    def settings(self, options: GlobalOptions) -> Settings:
        return resolve_settings(options, self.load_config(), self._credential_store, self._environ)

    ##############################################

    def login(self, base_url: str, token: str, profile: str = DEFAULT_PROFILE, timeout: float = None) -> dict:
        base_url = strip_url(base_url)
        if not base_url:
            raise ValidationError("A base URL is required", hint="Use --base-url URL or set OUTLINE_BASE_URL")
        if not base_url.startswith(('http://', 'https://')):
            raise ValidationError(f"Invalid base URL '{base_url}'", hint="Use a http:// or https:// URL")
        token = clean_token(token)
        if not token:
            raise ValidationError(
                "A token is required",
                hint="Use --token, --token-stdin or set OUTLINE_API_TOKEN",
            )
        profile = profile or DEFAULT_PROFILE

        # the token first, a credential store failure must not leave a current profile without token
        self._credential_store.set(profile, token)

        config = self.load_config()
        _ = config.profile(profile, create=True)
        _.baseUrl = base_url
        if timeout is not None:
            # whole seconds are stored, 0.5 must not become 0
            _.timeoutSeconds = math.ceil(timeout)
        config.currentProfile = profile
        self._config_store.save(config)

        _module_logger.info(f"Logged in profile '{profile}' on {base_url}")
        return {
            'profile': profile,
            'baseUrl': base_url,
            'message': f"Successfully logged in to profile '{profile}'.",
        }

    ##############################################

    def logout(self, profile: str = None) -> dict:
        if not profile:
            profile = self.current_profile_name()
        self._credential_store.delete(profile)
        return {
            'profile': profile,
            'message': f"Logged out from profile '{profile}'.",
        }

    ##############################################

    def status(self, settings: Settings) -> dict:
        if not settings.profile_exists and not settings.base_url:
            raise AuthError(
                "Not logged in. No profile found.",
                hint="Run 'outlinectl auth login --base-url URL --token TOKEN'",
            )
        authenticated = bool(settings.token)
        return {
            'profile': settings.profile,
            'baseUrl': settings.base_url,
            'authenticated': authenticated,
            'tokenSource': settings.token_source,
            'status': 'OK (Local)' if authenticated else 'Missing Token',
        }
