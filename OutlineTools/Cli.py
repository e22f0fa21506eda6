####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = ['Cli', 'CommandResult', 'Outcome']

####################################################################################################

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, TextIO
import argparse
import json
import logging
import os
import re
import shlex
import sys
import time

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion, CompleteEvent
from prompt_toolkit.document import Document as PromptDocument
from prompt_toolkit.history import FileHistory

from .AuthService import AuthService
from .DocumentService import DocumentService
from .OutlineApi import OutlineApi
from .config import (
    CLI_HISTORY, CONFIG_YAML, DEDUPE_JSON,
    ENV_BASE_URL, ENV_PROFILE, ENV_TOKEN,
    ConfigStore, GlobalOptions, Settings,
    config_path,
)
from .credentials import CredentialStore, open_credential_store
from .date import iso2str
from .dedupe import DedupeStore
from .errors import EXIT_OK, CancelledError, OutlineError, UnknownError, ValidationError
from .printer import STYLE, OutputFormatter, html_escape, make_meta, printc
from .version import __version__

####################################################################################################

_module_logger = logging.getLogger(__name__)

PROG = 'outlinectl'

type CommandName = str

# group -> sub-commands, in help order
COMMANDS = {
    'auth': ('login', 'status', 'logout'),
    'collections': ('list',),
    'docs': ('search', 'list', 'get', 'create', 'update', 'export'),
    'shell': (),
}

SHELL_COMMANDS = ('help', 'quit', 'exit')

# global flags taking a value
VALUE_FLAGS = ('--base-url', '--token', '--timeout', '--profile', '--max-retries')

LOG_FORMAT = '%(levelname)s %(name)s: %(message)s'

####################################################################################################

class ArgumentParser(argparse.ArgumentParser):

    """Raise a ValidationError instead of printing the usage and exiting"""

    def error(self, message: str) -> None:
        raise ValidationError(message, hint=f"Run '{self.prog} --help'")

####################################################################################################

def positive_int(value: str) -> int:
    _ = int(value)
    if _ < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return _

def non_negative_int(value: str) -> int:
    _ = int(value)
    if _ < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return _

def positive_float(value: str) -> float:
    _ = float(value)
    if _ <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {value}")
    return _

####################################################################################################

@dataclass
class CommandResult:
    data: Any = None
    # meta.pagination
    pagination: dict = None
    # human rendering, called with the data and a print function accepting HTML
    render: Callable = None

####################################################################################################

@dataclass
class Outcome:

    """Result of one dispatch, success or classified failure"""

    ok: bool
    command: str
    data: Any = None
    error: OutlineError = None
    pagination: dict = None
    render: Callable = None
    duration_ms: int = 0
    exit_code: int = EXIT_OK
    # nothing to render, e.g. --help
    silent: bool = False

    ##############################################

    @classmethod
    def success(cls, command: str, result: CommandResult) -> 'Outcome':
        return cls(
            ok=True,
            command=command,
            data=result.data,
            pagination=result.pagination,
            render=result.render,
        )

    @classmethod
    def failure(cls, command: str, error: OutlineError) -> 'Outcome':
        return cls(ok=False, command=command, error=error, exit_code=error.exit_code)

####################################################################################################

class CustomCompleter(Completer):

    """Complete the command group, then the sub-command, then the flags"""

    ##############################################

    def __init__(self, cli: 'Cli') -> None:
        self._cli = cli

    ##############################################

    def _words(self, words: list[str]) -> Iterable[str]:
        match len(words):
            case 0:
                return list(COMMANDS) + list(SHELL_COMMANDS)
            case 1:
                return COMMANDS.get(words[0], ())
            case _:
                command = '.'.join(words[:2])
                return self._cli.flags(command)

    ##############################################

    def get_completions(
            self,
            document: PromptDocument,
            complete_event: CompleteEvent,
    ) -> Iterable[Completion]:
        line = document.text_before_cursor.lstrip()
        # remove multiple spaces
        line = re.sub(' +', ' ', line)
        *words, word_before_cursor = line.split(' ')
        for _ in self._words(words):
            if _.startswith(word_before_cursor):
                yield Completion(
                    text=_,
                    start_position=-len(word_before_cursor),
                )

####################################################################################################

class Cli:

    """Parse an invocation, run one command and map the outcome to an envelope and an exit code.

    Collaborators are given to the constructor, the defaults are the real stores located in the
    configuration directory and the process streams.
    """

    ##############################################

    def __init__(
            self,
            config_store: ConfigStore = None,
            credential_store: CredentialStore = None,
            dedupe_store: DedupeStore = None,
            session=None,
            environ: dict = None,
            stdin: TextIO = None,
            stdout: TextIO = None,
            stderr: TextIO = None,
            prompt_session=None,
    ) -> None:
        self._environ = os.environ if environ is None else environ
        self._config_path = config_path(self._environ)
        self._config_store = config_store or ConfigStore(self._config_path.joinpath(CONFIG_YAML))
        # opened on first use, a backend failure is then reported as an outcome
        self._credential_store = credential_store
        self._dedupe_store = dedupe_store or DedupeStore(self._config_path.joinpath(DEDUPE_JSON))
        self._session = session
        self._stdin = stdin
        self._stderr = stderr
        self._prompt_session = prompt_session
        self._formatter = OutputFormatter(stdout=stdout, stderr=stderr)
        self._leaf_parsers = {}
        self._parser = self.build_parser()
        self._in_shell = False

    ##############################################

    @property
    def formatter(self) -> OutputFormatter:
        return self._formatter

    @property
    def credential_store(self) -> CredentialStore:
        if self._credential_store is None:
            self._credential_store = open_credential_store(self._environ)
        return self._credential_store

    @property
    def stdin(self) -> TextIO:
        return self._stdin or sys.stdin

    ############################################################################
    #
    # Argument grammar
    #

    @staticmethod
    def _add_global_flags(parser: argparse.ArgumentParser) -> None:
        # SUPPRESS: a flag given after the command must not be reset by the sub-parser default
        group = parser.add_argument_group('global options')
        group.add_argument('--json', action='store_true', default=argparse.SUPPRESS, help="print one JSON envelope line")
        group.add_argument('--quiet', action='store_true', default=argparse.SUPPRESS, help="print errors only")
        group.add_argument('--verbose', action='store_true', default=argparse.SUPPRESS, help="debug logging on stderr")
        group.add_argument('--base-url', default=argparse.SUPPRESS, help="Outline URL, overrides the profile")
        group.add_argument('--token', default=argparse.SUPPRESS, help="API token, overrides the stored one")
        group.add_argument('--timeout', type=positive_float, default=argparse.SUPPRESS, help="request timeout in seconds")
        group.add_argument('--profile', default=argparse.SUPPRESS, help="profile name")
        group.add_argument('--max-retries', type=non_negative_int, default=argparse.SUPPRESS, help="retries on 429, 5xx and network errors")

    ##############################################

    def _add_command(self, subparsers, group: str, name: str, handler: Callable, help: str) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(name, help=help, description=help)
        self._add_global_flags(parser)
        command = f'{group}.{name}' if group != name else name
        parser.set_defaults(command=command, handler=handler)
        self._leaf_parsers[command] = parser
        return parser

    @staticmethod
    def _add_content_flags(parser: argparse.ArgumentParser) -> None:
        group = parser.add_mutually_exclusive_group()
        group.add_argument('--text', help="markdown content")
        group.add_argument('--file', help="read the markdown content from a file")
        group.add_argument('--stdin', action='store_true', help="read the markdown content from stdin")

    ##############################################

    def build_parser(self) -> ArgumentParser:
        parser = ArgumentParser(
            prog=PROG,
            description='A CLI for Outline',
            epilog='Exit codes: 0 ok, 2 validation, 3 auth, 4 not found, 5 conflict, 6 retry exhausted, 10 unknown, 130 cancelled',
        )
        parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
        self._add_global_flags(parser)
        groups = parser.add_subparsers(dest='group', metavar='COMMAND', required=True)

        # auth
        auth = groups.add_parser('auth', help="manage the authentication")
        self._add_global_flags(auth)
        _ = auth.add_subparsers(dest='action', metavar='ACTION', required=True)
        login = self._add_command(_, 'auth', 'login', self._auth_login, "store a token and make the profile current")
        login.add_argument('--token-stdin', action='store_true', help="read the token from stdin")
        status = self._add_command(_, 'auth', 'status', self._auth_status, "show the active profile")
        status.add_argument('--check', action='store_true', help="verify the token against the server")
        self._add_command(_, 'auth', 'logout', self._auth_logout, "delete the stored token of the profile")

        # collections
        collections = groups.add_parser('collections', help="collection commands")
        self._add_global_flags(collections)
        _ = collections.add_subparsers(dest='action', metavar='ACTION', required=True)
        list_ = self._add_command(_, 'collections', 'list', self._collections_list, "list the collections")
        list_.add_argument('--limit', type=positive_int, default=10)
        list_.add_argument('--offset', type=non_negative_int, default=0)

        # docs
        docs = groups.add_parser('docs', help="document commands")
        self._add_global_flags(docs)
        _ = docs.add_subparsers(dest='action', metavar='ACTION', required=True)

        search = self._add_command(_, 'docs', 'search', self._docs_search, "search the documents")
        search.add_argument('--query', required=True)
        search.add_argument('--collection-id')
        search.add_argument('--parent-id')
        search.add_argument('--limit', type=positive_int, default=10)
        search.add_argument('--offset', type=non_negative_int, default=0)
        search.add_argument('--include-archived', action='store_true')

        list_ = self._add_command(_, 'docs', 'list', self._docs_list, "list the documents")
        list_.add_argument('--collection-id')
        list_.add_argument('--parent-id')
        list_.add_argument('--limit', type=positive_int, default=25)
        list_.add_argument('--offset', type=non_negative_int, default=0)

        get = self._add_command(_, 'docs', 'get', self._docs_get, "get a document")
        get.add_argument('--id', required=True)
        get.add_argument('--format', choices=('markdown', 'json'), default='markdown')

        create = self._add_command(_, 'docs', 'create', self._docs_create, "create and publish a document")
        create.add_argument('--title', required=True)
        create.add_argument('--collection-id')
        self._add_content_flags(create)
        create.add_argument('--parent-id')
        create.add_argument('--dedupe-key', help="idempotency key, a known key returns the document created first")

        update = self._add_command(_, 'docs', 'update', self._docs_update, "update a document")
        update.add_argument('--id', required=True)
        update.add_argument('--title')
        self._add_content_flags(update)
        update.add_argument('--append', action='store_true', help="append the text to the current content")

        export = self._add_command(_, 'docs', 'export', self._docs_export, "export a document to markdown files")
        export.add_argument('id')
        export.add_argument('--output-dir', default='.')
        export.add_argument('--subtree', action='store_true', help="export the child documents recursively")

        # shell
        self._add_command(groups, 'shell', 'shell', self._shell, "interactive mode")

        return parser

    ##############################################

    def flags(self, command: CommandName) -> list[str]:
        parser = self._leaf_parsers.get(command)
        if parser is None:
            return []
        return sorted(
            flag
            for action in parser._actions
            for flag in action.option_strings
            if flag.startswith('--')
        )

    ##############################################

    @staticmethod
    def _guess_command(argv: list[str]) -> CommandName:
        """Command name of an invocation that may not parse"""
        words = []
        skip = False
        for _ in argv:
            if skip:
                skip = False
            elif _.startswith('-'):
                skip = _ in VALUE_FLAGS
            else:
                words.append(_)
        if words and words[0] in COMMANDS:
            if len(words) > 1 and words[1] in COMMANDS[words[0]]:
                return f'{words[0]}.{words[1]}'
            return words[0]
        return PROG

    ############################################################################
    #
    # Dispatch
    #

    def _configure(self, options: GlobalOptions) -> None:
        self._formatter.configure(json=options.json, quiet=options.quiet)
        if options.verbose:
            level = logging.DEBUG
        elif options.quiet:
            level = logging.ERROR
        else:
            level = logging.WARNING
        logging.basicConfig(
            stream=self._stderr or sys.stderr,
            level=level,
            format=LOG_FORMAT,
            force=True,
        )

    ##############################################

    def execute(self, argv: list[str]) -> Outcome:
        """Run one command and return its outcome, nothing is printed except argparse help"""
        start = time.monotonic()
        argv = list(argv)
        # before the parser, an invalid invocation is reported in the requested format
        self._configure(GlobalOptions(
            json='--json' in argv,
            quiet='--quiet' in argv,
            verbose='--verbose' in argv,
        ))
        command = self._guess_command(argv)
        try:
            try:
                args = self._parser.parse_args(argv)
            except SystemExit as exception:
                # --help and --version
                return Outcome(ok=True, command=command, silent=True, exit_code=exception.code or EXIT_OK)
            options = GlobalOptions.from_args(args)
            self._configure(options)
            command = args.command
            _module_logger.debug(f"Run {command}")
            outcome = Outcome.success(command, args.handler(args, options))
        except OutlineError as exception:
            outcome = Outcome.failure(command, exception)
        except KeyboardInterrupt:
            outcome = Outcome.failure(command, CancelledError("Interrupted"))
        except Exception as exception:
            _module_logger.debug("Unexpected failure", exc_info=True)
            outcome = Outcome.failure(
                command,
                UnknownError(f"{exception.__class__.__name__}: {exception}", hint="Run again with --verbose"),
            )
        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        if not outcome.ok:
            _module_logger.debug(f"{command} failed with {outcome.error.code}")
        return outcome

    ##############################################

    def render(self, outcome: Outcome) -> Outcome:
        """Print an outcome, a result that cannot be printed becomes an UnknownError outcome"""
        if outcome.silent:
            return outcome
        if outcome.ok:
            meta = make_meta(outcome.duration_ms, outcome.pagination)
            try:
                self._formatter.write_result(outcome.data, outcome.command, meta, outcome.render)
                return outcome
            except KeyboardInterrupt:
                error = CancelledError("Interrupted")
            except Exception as exception:
                _module_logger.debug("Rendering failure", exc_info=True)
                error = UnknownError(
                    f"Cannot print the result: {exception.__class__.__name__}: {exception}",
                    hint="Run again with --json",
                )
            duration_ms = outcome.duration_ms
            outcome = Outcome.failure(outcome.command, error)
            outcome.duration_ms = duration_ms
        meta = make_meta(outcome.duration_ms)
        self._formatter.write_error(outcome.error, outcome.command, meta)
        return outcome

    ##############################################

    def run(self, argv: list[str]) -> int:
        outcome = self.render(self.execute(argv))
        return outcome.exit_code

    ############################################################################
    #
    # Wiring
    #

    def _auth_service(self) -> AuthService:
        return AuthService(self._config_store, self.credential_store, self._environ)

    def _settings(self, options: GlobalOptions) -> Settings:
        return self._auth_service().settings(options)

    def _api(self, settings: Settings) -> OutlineApi:
        return OutlineApi(
            settings.base_url,
            token=settings.token,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            session=self._session,
        )

    def _documents(self, settings: Settings) -> DocumentService:
        return DocumentService(self._api(settings), self._dedupe_store)

    ##############################################

    def _read_content(self, args) -> str | None:
        if args.stdin:
            return self.stdin.read()
        if args.file:
            path = Path(args.file)
            if not path.is_file():
                raise ValidationError(f"File not found: {args.file}")
            try:
                return path.read_text(encoding='utf8')
            except (OSError, UnicodeDecodeError) as exception:
                raise ValidationError(f"Cannot read {args.file}: {exception}") from exception
        return args.text

    ############################################################################
    #
    # Auth
    #

    def _auth_login(self, args, options: GlobalOptions) -> CommandResult:
        base_url = options.base_url or self._environ.get(ENV_BASE_URL)
        if args.token_stdin:
            if options.token:
                raise ValidationError("--token and --token-stdin are mutually exclusive")
            token = self.stdin.readline().strip()
        else:
            token = options.token or self._environ.get(ENV_TOKEN)
        profile = options.profile or self._environ.get(ENV_PROFILE)
        _ = self._auth_service().login(base_url, token, profile=profile, timeout=options.timeout)
        return CommandResult(_, render=render_message)

    ##############################################

    def _auth_status(self, args, options: GlobalOptions) -> CommandResult:
        settings = self._settings(options)
        data = self._auth_service().status(settings)
        if args.check:
            info = self._api(settings).auth_info()
            user = info.get('user') or {}
            team = info.get('team') or {}
            data['status'] = 'OK'
            data['user'] = user.get('name')
            data['team'] = team.get('name')
        return CommandResult(data, render=render_status)

    ##############################################

    def _auth_logout(self, args, options: GlobalOptions) -> CommandResult:
        profile = options.profile or self._environ.get(ENV_PROFILE)
        _ = self._auth_service().logout(profile)
        return CommandResult(_, render=render_message)

    ############################################################################
    #
    # Collections
    #

    def _collections_list(self, args, options: GlobalOptions) -> CommandResult:
        settings = self._settings(options)
        listing = self._api(settings).list_collections(limit=args.limit, offset=args.offset)
        return CommandResult(listing.items, listing.pagination_meta(), render_collections)

    ############################################################################
    #
    # Documents
    #

    def _docs_search(self, args, options: GlobalOptions) -> CommandResult:
        settings = self._settings(options)
        listing = self._documents(settings).search(
            args.query,
            collection_id=args.collection_id or settings.collection_id,
            parent_id=args.parent_id,
            limit=args.limit,
            offset=args.offset,
            include_archived=args.include_archived,
        )
        return CommandResult(listing.items, listing.pagination_meta(), render_search)

    ##############################################

    def _docs_list(self, args, options: GlobalOptions) -> CommandResult:
        settings = self._settings(options)
        listing = self._documents(settings).list(
            collection_id=args.collection_id or settings.collection_id,
            parent_id=args.parent_id,
            limit=args.limit,
            offset=args.offset,
        )
        return CommandResult(listing.items, listing.pagination_meta(), render_documents)

    ##############################################

    def _docs_get(self, args, options: GlobalOptions) -> CommandResult:
        settings = self._settings(options)
        document = self._documents(settings).get(args.id)
        if args.format == 'markdown' and not options.json:
            # printed verbatim
            return CommandResult(document.text or '')
        if args.format == 'json':
            return CommandResult(document, render=render_json)
        return CommandResult(document, render=render_document)

    ##############################################

    def _docs_create(self, args, options: GlobalOptions) -> CommandResult:
        text = self._read_content(args)
        settings = self._settings(options)
        document = self._documents(settings).create(
            title=args.title,
            collection_id=args.collection_id or settings.collection_id,
            text=text,
            parent_id=args.parent_id,
            dedupe_key=args.dedupe_key,
        )
        return CommandResult(document, render=render_document)

    ##############################################

    def _docs_update(self, args, options: GlobalOptions) -> CommandResult:
        text = self._read_content(args)
        settings = self._settings(options)
        document = self._documents(settings).update(args.id, title=args.title, text=text, append=args.append)
        return CommandResult(document, render=render_document)

    ##############################################

    def _docs_export(self, args, options: GlobalOptions) -> CommandResult:
        settings = self._settings(options)
        files = self._documents(settings).export(args.id, args.output_dir, subtree=args.subtree)
        data = {
            'message': f"Export completed for document '{args.id}' to '{args.output_dir}'.",
            'files': files,
        }
        return CommandResult(data, render=render_export)

    ############################################################################
    #
    # Shell
    #

    def _shell_usage(self) -> None:
        for _ in (
            "<red>Enter</red>: <blue>command sub-command --flag value</blue>, e.g. <blue>docs get --id ID</blue>",
            "<red>Commands are</red>: " + ', '.join([f"<blue>{_}</blue>" for _ in COMMANDS if _ != 'shell']),
            "use <blue>help</blue> to get this message, <blue>command --help</blue> to get help on a command",
            "use <green>tab</green> key to complete",
            "use <green>up/down</green> key to navigate history",
            "<red>Exit</red> using command <blue>quit</blue> or <blue>Ctrl+d</blue>",
        ):
            printc(_, file=self._formatter.stdout)

    ##############################################

    def _make_prompt_session(self) -> PromptSession:
        path = self._config_path.joinpath(CLI_HISTORY)
        path.parent.mkdir(parents=True, exist_ok=True)
        return PromptSession(
            completer=CustomCompleter(self),
            history=FileHistory(path),
        )

    ##############################################

    def _run_line(self, line: str, global_argv: list[str]) -> bool:
        try:
            argv = shlex.split(line)
        except ValueError as exception:
            self.render(Outcome.failure(PROG, ValidationError(f"Invalid command line: {exception}")))
            return True
        if not argv:
            return True
        match argv[0]:
            case 'quit' | 'exit':
                return False
            case 'help':
                self._shell_usage()
                return True
            case 'shell':
                self.render(Outcome.failure('shell', ValidationError("Already in the shell")))
                return True
        self.run(argv + global_argv)
        return True

    ##############################################

    def _shell(self, args, options: GlobalOptions) -> CommandResult:
        if self._in_shell:
            raise ValidationError("Already in the shell")
        # the global flags of the shell invocation apply to every line
        global_argv = []
        if options.json:
            global_argv.append('--json')
        if options.quiet:
            global_argv.append('--quiet')
        if options.verbose:
            global_argv.append('--verbose')
        for flag, value in (
            ('--base-url', options.base_url),
            ('--token', options.token),
            ('--timeout', options.timeout),
            ('--profile', options.profile),
            ('--max-retries', options.max_retries),
        ):
            if value is not None:
                global_argv += [flag, str(value)]

        session = self._prompt_session or self._make_prompt_session()
        if not options.json:
            self._shell_usage()
        executed = 0
        self._in_shell = True
        try:
            while True:
                try:
                    line = session.prompt([('class:prompt', f'{PROG}> ')], style=STYLE)
                except KeyboardInterrupt:
                    continue
                except EOFError:
                    break
                if not self._run_line(line, global_argv):
                    break
                if line.strip():
                    executed += 1
        finally:
            self._in_shell = False
        self._configure(options)
        return CommandResult({'executed': executed}, render=render_shell)

####################################################################################################
#
# Human rendering
#

def render_message(data: dict, print: Callable) -> None:
    print(f"<green>{html_escape(data['message'])}</green>")

def render_status(data: dict, print: Callable) -> None:
    for key in ('profile', 'baseUrl', 'status', 'tokenSource', 'user', 'team'):
        value = data.get(key)
        if value is not None:
            print(f"<blue>{key:12}</blue> <green>{html_escape(str(value))}</green>")

def render_collections(collections: list, print: Callable) -> None:
    for _ in collections:
        print(f"<green>{html_escape(_.id):40}</green> <blue>{html_escape(_.name or '')}</blue>")

def render_documents(documents: list, print: Callable) -> None:
    for _ in documents:
        updated = iso2str(_.updatedAt)
        print(f"<green>{html_escape(_.id):40}</green> <blue>{html_escape(_.title or ''):40}</blue> {updated}")

def render_search(results: list, print: Callable) -> None:
    for _ in results:
        document = _.document
        print(f"<green>{html_escape(document.id):40}</green> <blue>{html_escape(document.title or '')}</blue>")
        if _.snippet:
            print(f"  {html_escape(_.snippet)}")

def render_document(document, print: Callable) -> None:
    print(f"<green>{html_escape(document.id)}</green> <blue>{html_escape(document.title or '')}</blue>")
    if document.url:
        print(f"  <orange>{html_escape(document.url)}</orange>")
    if document.updatedAt:
        print(f"  updated {iso2str(document.updatedAt)}")

def render_json(document, print: Callable) -> None:
    _ = json.dumps(document.to_json(), indent=2, ensure_ascii=False)
    print(html_escape(_))

def render_export(data: dict, print: Callable) -> None:
    for _ in data['files']:
        print(f"<blue>Wrote</blue> <green>{html_escape(_.path)}</green>")
    print(f"<green>{html_escape(data['message'])}</green>")

def render_shell(data: dict, print: Callable) -> None:
    print(f"<blue>{data['executed']} command(s) executed</blue>")
