# kiln/internals/errors.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict

from kiln.internals.report import Reporter


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Category(str, Enum):
    GENERAL   = "general"
    CONFIG    = "configuration"
    TOOL      = "external-tool"
    LINK      = "link"
    LIBRARY   = "library"
    INTERNAL  = "internal"


@dataclass(frozen=True)
class ErrorMessage:
    code: str
    severity: Severity
    text: str
    category: Category = Category.GENERAL
    doc: str = ""


REGISTRY: Dict[str, ErrorMessage] = {}

class _ErrorCatalog:
    def __init__(self, backing: Dict[str, ErrorMessage]) -> None:
        self._registry = backing

    def __getattr__(self, name: str) -> ErrorMessage:
        try:
            return self._registry[name]
        except KeyError as e:
            raise AttributeError(name) from e

    def __getitem__(self, code: str) -> ErrorMessage:
        return self._registry[code]


ERR = _ErrorCatalog(REGISTRY)

def emit(r: Reporter, em: ErrorMessage, stage: str | None = None, **kwargs) -> None:
    text = _fmt(em.code, **kwargs)
    if em.severity == Severity.ERROR:
        r.error(em.code, text, stage)
    else:
        r.warn(em.code, text, stage)


class KilnError(Exception):
    """Base exception for coded backend errors."""

    def __init__(self, code: str, **kwargs):
        self.code = code
        self.kwargs = kwargs
        self.message = _fmt(code, **kwargs)
        super().__init__(f"{code}: {self.message}")


class ConfigurationError(KilnError):
    """Unsupported target, unknown output kind or broken properties."""


class ExternalToolFailure(KilnError):
    """An external tool exited with a non-zero code."""

    def __init__(self, tool: str, exit_code: int):
        self.tool = tool
        self.exit_code = exit_code
        super().__init__("CE4002", tool=tool, exit_code=exit_code)


class BitcodeLinkError(KilnError):
    """A native bitcode library could not be linked into the program module."""

    def __init__(self, library: str, reason: str = ""):
        self.library = library
        self.reason = reason
        super().__init__("CE4004", library=library)


class LibraryWriteError(KilnError):
    """The library writer could not lay out or pack the library."""


#
# --- Helpers
#

def _add(msg: ErrorMessage) -> None:
    if msg.code in REGISTRY:
        raise ValueError(f"duplicate error code {REGISTRY[msg.code]} in {msg}")
    REGISTRY[msg.code] = msg

def _get(code: str) -> ErrorMessage:
    try:
        return REGISTRY[code]
    except KeyError:
        raise KeyError(f"unknown error code: {code}")

def _fmt(code: str, **kwargs) -> str:
    msg = _get(code)
    try:
        return msg.text.format(**kwargs)
    except KeyError as key_error:
        missing = key_error.args[0]
        raise KeyError(f"missing text key '{missing}' for {code} "
                       f"(needed by: {msg.text!r})") from None

#
# --- Registry population
#

# Configuration errors (CE40xx)
_add(ErrorMessage("CE4000", Severity.ERROR,
    "unsupported target '{target}'",
    Category.CONFIG, "The target is not one of the known target families."))

_add(ErrorMessage("CE4001", Severity.ERROR,
    "unknown output kind '{kind}'",
    Category.CONFIG, "Output kind must be program, dynamic, framework, library or bitcode."))

# External tool errors
_add(ErrorMessage("CE4002", Severity.ERROR,
    "the {tool} command returned non-zero exit code: {exit_code}",
    Category.TOOL, "An external toolchain invocation failed. Its own diagnostics precede this message."))

_add(ErrorMessage("CE4003", Severity.ERROR,
    "linker invocation reported errors",
    Category.LINK, "The system linker (or a post-link step) failed; no artifact was produced."))

_add(ErrorMessage("CE4004", Severity.ERROR,
    "failed to link {library}",
    Category.LINK, "LLVM bitcode linking of a native library into the program module failed."))

_add(ErrorMessage("CE4005", Severity.ERROR,
    "framework output is not supported for target '{target}'",
    Category.CONFIG, "Framework bundles can only be produced for Apple targets."))

_add(ErrorMessage("CE4006", Severity.ERROR,
    "missing property '{name}' for target '{target}'",
    Category.CONFIG, "The properties file has no value for a required target property."))

_add(ErrorMessage("CE4007", Severity.ERROR,
    "invalid properties file '{path}': {reason}",
    Category.CONFIG, "The properties file could not be read or is not valid TOML."))

# Library errors
_add(ErrorMessage("CE4008", Severity.ERROR,
    "cannot write library '{path}': {reason}",
    Category.LIBRARY, "Laying out or packing the library failed."))

_add(ErrorMessage("CW4009", Severity.WARNING,
    "static library '{path}' is not valid for target '{target}'",
    Category.LINK, "The file does not have a static library format accepted by the target; it is skipped."))
