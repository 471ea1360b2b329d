"""Rust-style error display for treeline configuration, registry and tree errors."""

from __future__ import annotations

import inspect
import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Frames under this directory belong to treeline itself, not to the caller
_PACKAGE_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """Stable codes shown in the ``error[E...]`` header.

    - E2xx: configuration
    - E3xx: worker registry
    - E4xx: job tree and store writes
    """

    CONFIG_INVALID_DATABASE_URL = 'E200'
    CONFIG_INVALID_POOL = 'E201'
    CONFIG_INVALID_UNIQUE_POLICY = 'E202'

    WORKER_NOT_REGISTERED = 'E300'
    WORKER_DUPLICATE_NAME = 'E301'
    WORKER_RESERVED_NAME = 'E302'
    WORKER_NOT_CALLABLE = 'E303'

    TREE_INVALID_TRANSITION = 'E400'
    TREE_DUPLICATE_NODE_ID = 'E401'
    TREE_DANGLING_REFERENCE = 'E402'
    TREE_UNKNOWN_WORKFLOW = 'E403'
    TREE_DUPLICATE_WORKFLOW_ID = 'E404'


@dataclass(frozen=True)
class _Palette:
    reset: str = ''
    bold: str = ''
    red: str = ''
    blue: str = ''
    cyan: str = ''
    green: str = ''
    dim: str = ''


_ANSI = _Palette(
    reset='\033[0m',
    bold='\033[1m',
    red='\033[91m',
    blue='\033[94m',
    cyan='\033[96m',
    green='\033[92m',
    dim='\033[2m',
)
_PLAIN = _Palette()


def _flag_set(name: str) -> bool:
    return os.environ.get(name, '').strip().lower() in {'1', 'true', 'yes', 'on'}


def _should_use_colors() -> bool:
    if _flag_set('TREELINE_FORCE_COLOR'):
        return True
    # https://no-color.org/
    if 'NO_COLOR' in os.environ:
        return False
    isatty = getattr(sys.stderr, 'isatty', None)
    return bool(isatty and isatty())


def _palette(use_colors: bool | None) -> _Palette:
    if use_colors is None:
        use_colors = _should_use_colors()
    return _ANSI if use_colors else _PLAIN


@dataclass
class SourceLocation:
    """A file/line pair pointing at the caller's code."""

    file: str
    line: int

    @classmethod
    def from_frame(cls, frame: Any) -> SourceLocation:
        return cls(file=frame.f_code.co_filename, line=frame.f_lineno)

    def get_source_line(self) -> str | None:
        text = linecache.getline(self.file, self.line)
        return text.rstrip('\n') or None

    def format_short(self) -> str:
        return f'{self.file}:{self.line}'


def _render_location(
    location: SourceLocation, p: _Palette, with_source: bool = True
) -> list[str]:
    out = [f'  {p.blue}-->{p.reset} {p.cyan}{location.format_short()}{p.reset}']
    source = location.get_source_line() if with_source else None
    if source is None:
        return out
    gutter = ' ' * len(str(location.line))
    body = source.lstrip()
    underline = ' ' * (len(source) - len(body)) + '^' * len(body)
    out.append(f'   {p.blue}{gutter}|{p.reset}')
    out.append(f'   {p.blue}{location.line}|{p.reset} {source}')
    out.append(f'   {p.blue}{gutter}|{p.reset} {p.red}{underline}{p.reset}')
    return out


def _render_note(note: str, p: _Palette) -> list[str]:
    first, *rest = note.split('\n')
    out = [f'   {p.blue}={p.reset} {p.bold}{p.blue}note{p.reset}: {first}']
    out.extend(f'          {line}' for line in rest)
    return out


def _render_help(help_text: str, p: _Palette) -> list[str]:
    out = ['', f'   {p.blue}={p.reset} {p.bold}{p.green}help{p.reset}:']
    out.extend(f'        {line}' for line in help_text.split('\n'))
    return out


@dataclass
class TreelineError(Exception):
    """Base class for errors raised while configuring or materializing job trees.

    Rendered like a compiler diagnostic: a coded header, the offending line
    of user code, then any notes and help text.
    """

    message: str
    code: ErrorCode | None = None
    location: SourceLocation | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None
    # Point at the call site without echoing it (the line may hold credentials)
    redact_source: bool = False

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.location is None:
            frame = _find_user_frame()
            if frame is not None:
                self.location = SourceLocation.from_frame(frame)

    def with_note(self, note: str) -> TreelineError:
        self.notes.append(note)
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        p = _palette(use_colors)
        tag = f'[{self.code.value}]' if self.code is not None else ''
        out = ['', f'{p.bold}{p.red}error{tag}:{p.reset} {self.message}']
        if self.location is not None:
            out.extend(
                _render_location(self.location, p, with_source=not self.redact_source)
            )
        for note in self.notes:
            out.extend(_render_note(note, p))
        if self.help_text:
            out.extend(_render_help(self.help_text, p))
        return '\n'.join(out)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class ConfigurationError(TreelineError):
    """Invalid engine, database or worker configuration."""


@dataclass
class RegistryError(TreelineError):
    """A worker registry lookup or registration failed."""


@dataclass
class JobTreeError(TreelineError):
    """A job tree is malformed or a store write would break the state machine."""


class ValidationReport:
    """Accumulates errors for one validation pass so they surface together."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name = phase_name
        self.errors: list[TreelineError] = []

    def add(self, error: TreelineError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        p = _palette(use_colors)
        chunks = [e.format_rust_style(use_colors=p is _ANSI) for e in self.errors]
        chunks.append(
            f'\n{p.bold}{p.red}error{p.reset}: aborting due to '
            f'{len(self.errors)} previous errors'
        )
        return '\n'.join(chunks)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(TreelineError):
    """Raised by raise_collected when a report holds two or more errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'aborting due to {len(self.report.errors)} previous errors'
        # each collected error carries its own location
        Exception.__init__(self, self.message)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """Raise nothing, the single error, or a MultipleValidationErrors."""
    if not report.errors:
        return
    if len(report.errors) == 1:
        raise report.errors[0]
    raise MultipleValidationErrors(message='', report=report)


def _find_user_frame() -> Any | None:
    frame = inspect.currentframe()
    while frame is not None:
        path = frame.f_code.co_filename
        internal = (
            path.startswith('<')
            or path.startswith(_PACKAGE_ROOT)
            or '/site-packages/' in path
        )
        if not internal:
            return frame
        frame = frame.f_back
    return None


_original_excepthook = sys.excepthook


def _treeline_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    if not isinstance(exc_value, TreelineError) or _flag_set('TREELINE_PLAIN_ERRORS'):
        _original_excepthook(exc_type, exc_value, exc_tb)
        return

    print(exc_value.format_rust_style(), file=sys.stderr)
    if _flag_set('TREELINE_VERBOSE'):
        p = _palette(None)
        print(f'\n{p.dim}Full traceback (TREELINE_VERBOSE=1):{p.reset}', file=sys.stderr)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Render uncaught TreelineErrors as diagnostics instead of tracebacks."""
    sys.excepthook = _treeline_excepthook


def uninstall_error_handler() -> None:
    sys.excepthook = _original_excepthook
