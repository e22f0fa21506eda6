####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = [
    'OutputFormatter',
    'STYLE',
    'html_escape',
    'make_meta',
    'printc',
    'pt_print',
    'to_jsonable',
]

####################################################################################################

from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, TextIO
import html
import json
import re
import sys

from prompt_toolkit import HTML
from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import to_plain_text
from prompt_toolkit.styles import Style
import yaml

from .errors import OutlineError
from .version import __version__

####################################################################################################

STYLE = Style.from_dict({
    # User input (default text)
    '': '#ffffff',
    # Prompt
    'prompt': '#ff0000',
    # Output
    'red': '#ed1414',
    'green': '#10cf15',
    'blue': '#1b99f3',
    'orange': '#f57300',
    'violet': '#9b58b5',
    'greenblue': '#19bb9c',
})

####################################################################################################

def pt_print(message: str, file: TextIO = None) -> None:
    file = file or sys.stdout
    message = HTML(message)
    if file.isatty():
        print_formatted_text(
            message,
            style=STYLE,
            file=file,
        )
    else:
        # redirected, the terminal renderer would write CR LF
        print(to_plain_text(message), file=file, flush=True)

####################################################################################################

# characters that XML 1.0, thus prompt_toolkit HTML, rejects even escaped
XML_INVALID_RE = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]')

def html_escape(text: str) -> str:
    """Escape a text for prompt_toolkit HTML, control characters are replaced by a space"""
    return XML_INVALID_RE.sub(' ', html.escape(text))

printc = pt_print

####################################################################################################

def to_jsonable(data: Any) -> Any:
    """Convert a result to plain JSON types"""
    match data:
        case None | bool() | int() | float() | str():
            return data
        case dict():
            return {str(key): to_jsonable(value) for key, value in data.items()}
        case list() | tuple() | set():
            return [to_jsonable(_) for _ in data]
        case Path():
            return str(data)
        case datetime():
            return data.isoformat()
    if hasattr(data, 'to_json'):
        return to_jsonable(data.to_json())
    if is_dataclass(data):
        return to_jsonable(asdict(data))
    return str(data)

####################################################################################################

def make_meta(duration_ms: int = 0, pagination: dict = None) -> dict:
    meta = {
        'durationMs': int(duration_ms),
        'version': __version__,
    }
    if pagination:
        meta['pagination'] = pagination
    return meta

####################################################################################################

type Render = Callable[[Any, Callable[[str], None]], None]

class OutputFormatter:

    """Render a command result or failure.

    In JSON mode a result and a failure are both one line of JSON on stdout, the envelope
    ``{ok, command, data | error, meta}``. In human mode a string is printed verbatim, other data
    go through a *render* callback or a YAML dump, failures are printed on stderr.

    Quiet mode drops results, never failures.
    """

    ##############################################

    def __init__(self, stdout: TextIO = None, stderr: TextIO = None) -> None:
        # None means the sys stream at the time of the print
        self._stdout = stdout
        self._stderr = stderr
        self._json = False
        self._quiet = False

    ##############################################

    def configure(self, json: bool = False, quiet: bool = False) -> None:
        self._json = bool(json)
        self._quiet = bool(quiet)

    @property
    def stdout(self) -> TextIO:
        return self._stdout or sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr or sys.stderr

    ##############################################

    def print(self, message: str = '') -> None:
        printc(message, file=self.stdout)

    def _write_line(self, text: str, file: TextIO) -> None:
        file.write(text)
        if not text.endswith('\n'):
            file.write('\n')
        file.flush()

    def _write_envelope(self, envelope: dict) -> None:
        self._write_line(json.dumps(envelope, ensure_ascii=False, separators=(',', ':')), self.stdout)

    ##############################################

    def write_result(self, data: Any, command: str, meta: dict = None, render: Render = None) -> None:
        if self._quiet:
            return
        if self._json:
            self._write_envelope({
                'ok': True,
                'command': command,
                'data': to_jsonable(data),
                'meta': meta or make_meta(),
            })
        elif isinstance(data, str):
            self._write_line(data, self.stdout)
        elif render is not None:
            render(data, self.print)
        elif data is not None:
            _ = yaml.safe_dump(to_jsonable(data), sort_keys=False, allow_unicode=True)
            self._write_line(_, self.stdout)

    ##############################################

    def write_error(self, error: OutlineError, command: str, meta: dict = None) -> None:
        if self._json:
            self._write_envelope({
                'ok': False,
                'command': command,
                'error': error.to_json(),
                'meta': meta or make_meta(),
            })
        else:
            printc(f"<red>Error:</red> {html_escape(error.message)}", file=self.stderr)
            if error.hint:
                printc(f"<blue>Hint:</blue> {html_escape(error.hint)}", file=self.stderr)
