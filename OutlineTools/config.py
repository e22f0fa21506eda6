####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = [
    'CONFIG_PATH',
    'DEFAULT_PROFILE',
    'DEFAULT_TIMEOUT',
    'DEFAULT_MAX_RETRIES',
    'Profile',
    'Config',
    'ConfigStore',
    'GlobalOptions',
    'Settings',
    'config_path',
    'resolve_settings',
    'clean_token',
    'strip_url',
    'write_atomic',
]

####################################################################################################

from dataclasses import dataclass, field
from pathlib import Path
import logging
import os
import tempfile

import yaml

from .errors import ValidationError

####################################################################################################

_module_logger = logging.getLogger(__name__)

CONFIG_PATH = Path('~/.config/outlinectl').expanduser()
CONFIG_YAML = 'config.yaml'
DEDUPE_JSON = 'dedupe.json'
SECRETS_JSON = 'secrets.json'
CLI_HISTORY = 'cli_history'

DEFAULT_PROFILE = 'default'
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3

ENV_BASE_URL = 'OUTLINE_BASE_URL'
ENV_TOKEN = 'OUTLINE_API_TOKEN'
ENV_COLLECTION_ID = 'OUTLINE_COLLECTION_ID'
ENV_PROFILE = 'OUTLINE_PROFILE'
ENV_MAX_RETRIES = 'OUTLINE_MAX_RETRIES'
ENV_CONFIG_DIR = 'OUTLINECTL_CONFIG_DIR'
ENV_CREDENTIAL_STORE = 'OUTLINECTL_CREDENTIAL_STORE'

####################################################################################################

def config_path(environ: dict = None) -> Path:
    if environ is None:
        environ = os.environ
    _ = environ.get(ENV_CONFIG_DIR)
    if _:
        return Path(_).expanduser()
    return CONFIG_PATH

####################################################################################################

def write_atomic(path: Path | str, data: str, mode: int = None) -> Path:
    """Write a text file through a temporary file and a rename"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f'.{path.name}.', dir=path.parent)
    try:
        if mode is not None:
            os.chmod(tmp_path, mode)
        with os.fdopen(fd, 'w', encoding='utf8') as fh:
            fh.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise
    return path

####################################################################################################

def strip_url(url: str) -> str:
    if url is None:
        return None
    return url.strip().rstrip('/')

####################################################################################################

def clean_token(token: str, source: str = 'token') -> str | None:
    """Strip the surrounding white spaces of a token, reject a token containing one.

    The value is never part of the error message.
    """
    if token is None:
        return None
    token = token.strip()
    if any(_.isspace() for _ in token):
        raise ValidationError(
            f"Invalid {source}: the token must not contain white spaces",
            hint="Check the token value, e.g. a secret pasted with a line break",
        )
    return token or None

####################################################################################################

@dataclass
class Profile:
    name: str
    baseUrl: str = ''
    timeoutSeconds: int = DEFAULT_TIMEOUT

    ##############################################

    def __post_init__(self):
        self.baseUrl = strip_url(self.baseUrl) or ''

    ##############################################

    def to_dict(self) -> dict:
        return {
            'baseUrl': self.baseUrl,
            'timeoutSeconds': self.timeoutSeconds,
        }

####################################################################################################

@dataclass
class Config:
    profiles: dict[str, Profile] = field(default_factory=dict)
    currentProfile: str = DEFAULT_PROFILE

    ##############################################

    @property
    def current(self) -> Profile | None:
        # a dangling currentProfile is tolerated
        return self.profiles.get(self.currentProfile)

    ##############################################

    def profile(self, name: str, create: bool = False) -> Profile | None:
        if create and name not in self.profiles:
            self.profiles[name] = Profile(name)
        return self.profiles.get(name)

    ##############################################

    def to_dict(self) -> dict:
        return {
            'currentProfile': self.currentProfile,
            'profiles': {name: _.to_dict() for name, _ in self.profiles.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        config = cls()
        if not isinstance(data, dict):
            return config
        current = data.get('currentProfile')
        if isinstance(current, str) and current:
            config.currentProfile = current
        profiles = data.get('profiles') or {}
        if isinstance(profiles, dict):
            for name, _ in profiles.items():
                if not isinstance(_, dict):
                    continue
                try:
                    timeout = int(_.get('timeoutSeconds', DEFAULT_TIMEOUT))
                except (TypeError, ValueError):
                    timeout = DEFAULT_TIMEOUT
                config.profiles[str(name)] = Profile(
                    name=str(name),
                    baseUrl=str(_.get('baseUrl') or ''),
                    timeoutSeconds=timeout,
                )
        return config

####################################################################################################

class ConfigStore:

    """Load and save the profile configuration.

    There is no lock: two processes saving at the same time race and the last writer wins.
    """

    ##############################################

    def __init__(self, path: Path | str = None) -> None:
        if path is None:
            path = config_path().joinpath(CONFIG_YAML)
        self._path = Path(path)

    ##############################################

    @property
    def path(self) -> Path:
        return self._path

    ##############################################

    def load(self) -> Config:
        try:
            with open(self._path, encoding='utf8') as fh:
                _ = yaml.safe_load(fh)
        except FileNotFoundError:
            return Config()
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exception:
            _module_logger.warning(f"Ignoring unreadable config {self._path}: {exception}")
            return Config()
        return Config.from_dict(_)

    ##############################################

    def save(self, config: Config) -> None:
        data = yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True)
        write_atomic(self._path, data)
        _module_logger.debug(f"Saved config {self._path}")

####################################################################################################

@dataclass(frozen=True)
class GlobalOptions:

    """Global flags as given on the command line, None when absent"""

    json: bool = False
    quiet: bool = False
    verbose: bool = False
    base_url: str = None
    token: str = field(default=None, repr=False)
    timeout: float = None
    profile: str = None
    max_retries: int = None

    ##############################################

    @classmethod
    def from_args(cls, args) -> 'GlobalOptions':
        return cls(**{_: getattr(args, _, None) for _ in cls.__dataclass_fields__})

####################################################################################################

@dataclass(frozen=True)
class Settings:

    """Effective configuration of one command invocation"""

    profile: str
    base_url: str | None
    token: str | None = field(repr=False)
    token_source: str | None
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    collection_id: str | None = None
    profile_exists: bool = False

####################################################################################################

def _parse_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got '{value}'")

####################################################################################################

def resolve_settings(
        options: GlobalOptions,
        config: Config,
        credential_store,
        environ: dict = None,
) -> Settings:
    """Compute the effective settings.

    Precedence is command line flag, then environment variable, then stored profile / credential.
    This is the only place where the environment overrides are read.
    """
    if environ is None:
        environ = os.environ

    profile_name = options.profile or environ.get(ENV_PROFILE) or config.currentProfile
    profile = config.profiles.get(profile_name)

    base_url = strip_url(options.base_url) or strip_url(environ.get(ENV_BASE_URL))
    if not base_url and profile is not None:
        base_url = profile.baseUrl or None

    token_source = None
    if options.token:
        token, token_source = clean_token(options.token, '--token'), 'flag'
    elif environ.get(ENV_TOKEN):
        token, token_source = clean_token(environ[ENV_TOKEN], ENV_TOKEN), 'env'
    else:
        token, token_source = clean_token(credential_store.get(profile_name), 'stored token'), 'store'
    if not token:
        token_source = None

    if options.timeout is not None:
        timeout = options.timeout
    elif profile is not None:
        timeout = profile.timeoutSeconds
    else:
        timeout = DEFAULT_TIMEOUT

    if options.max_retries is not None:
        max_retries = options.max_retries
    elif environ.get(ENV_MAX_RETRIES):
        max_retries = _parse_int(environ[ENV_MAX_RETRIES], ENV_MAX_RETRIES)
    else:
        max_retries = DEFAULT_MAX_RETRIES
    if max_retries < 0:
        raise ValidationError(f"max retries must be >= 0, got {max_retries}")

    return Settings(
        profile=profile_name,
        base_url=base_url,
        token=token or None,
        token_source=token_source,
        timeout=timeout,
        max_retries=max_retries,
        collection_id=environ.get(ENV_COLLECTION_ID) or None,
        profile_exists=profile is not None,
    )
