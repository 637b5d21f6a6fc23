"""Compiler configuration for one backend run."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from kiln.backend.platform_detect import Family, Target
from kiln.internals.errors import ConfigurationError


class CompilerOutputKind(str, Enum):
    PROGRAM = "program"
    DYNAMIC = "dynamic"
    FRAMEWORK = "framework"
    LIBRARY = "library"
    BITCODE = "bitcode"

    @classmethod
    def parse(cls, name: str) -> CompilerOutputKind:
        """Raises ConfigurationError (CE4001) for unknown kinds."""
        try:
            return cls(name.lower())
        except ValueError:
            raise ConfigurationError("CE4001", kind=name) from None

    def suffix(self, target: Target) -> str:
        family = target.family
        if self is CompilerOutputKind.PROGRAM:
            if family is Family.MINGW:
                return ".exe"
            return ".wasm" if family is Family.WASM else ".kexe"
        if self is CompilerOutputKind.DYNAMIC:
            if family is Family.MINGW:
                return ".dll"
            return ".dylib" if family is Family.APPLE else ".so"
        if self is CompilerOutputKind.FRAMEWORK:
            return ".framework"
        if self is CompilerOutputKind.LIBRARY:
            return ".klib"
        return ".bc"

    def prefix(self, target: Target) -> str:
        if self is CompilerOutputKind.DYNAMIC and target.family is not Family.MINGW:
            return "lib"
        return ""


def output_file_for(name: str, kind: CompilerOutputKind, target: Target) -> str:
    """Apply the kind's prefix and suffix unless `name` already carries the suffix."""
    suffix = kind.suffix(target)
    if name.endswith(suffix):
        return name
    path = Path(name)
    prefix = kind.prefix(target)
    stem = path.name if path.name.startswith(prefix) else prefix + path.name
    return str(path.with_name(stem + suffix))


@dataclass
class LinkedLibrary:
    """A library the program links against, with what it contributes to the link."""
    name: str
    included_paths: list[str] = field(default_factory=list)
    linker_opts: list[str] = field(default_factory=list)
    is_default: bool = False


@dataclass
class CompilerConfig:
    target: Target
    produce: CompilerOutputKind
    output_name: str
    module_name: str = "main"
    optimize: bool = False
    debug: bool = False
    nomain: bool = False
    nopack: bool = False
    verbose: bool = False
    linker_args: list[str] = field(default_factory=list)
    manifest_file: Optional[str] = None
    native_libraries: list[str] = field(default_factory=list)
    default_native_libraries: list[str] = field(default_factory=list)
    include_binaries: list[str] = field(default_factory=list)
    libraries_to_link: list[LinkedLibrary] = field(default_factory=list)
    c_adapter_source: Optional[str] = None
    abi_version: int = 1

    @property
    def output_file(self) -> str:
        if self.produce is CompilerOutputKind.LIBRARY:
            # The library writer appends the suffix when it packs.
            return self.output_name
        return output_file_for(self.output_name, self.produce, self.target)
