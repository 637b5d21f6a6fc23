"""Toolchain distribution and per-target properties (kiln.toml).

The properties file is read once at startup. Every component receives the
resolved `Distribution` and `TargetProperties` objects instead of looking
configuration up on its own.
"""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from kiln.backend.platform_detect import Target
from kiln.internals.errors import ConfigurationError

KILN_HOME = Path.home() / ".kiln"
PROPERTIES_NAME = "kiln.toml"
PROPERTIES_ENV = "KILN_PROPERTIES"


@dataclass(frozen=True)
class Distribution:
    """Resolved locations of the toolchain distribution."""
    home: str
    llvm_home: str
    lib_lto: str = ""
    dependencies: str = ""
    runtime_override: str = ""

    @property
    def llvm_bin(self) -> str:
        return f"{self.llvm_home}/bin"

    @property
    def llvm_lib(self) -> str:
        return f"{self.llvm_home}/lib"

    @property
    def clang(self) -> str:
        return f"{self.llvm_bin}/clang"

    @property
    def dependencies_dir(self) -> str:
        return self.dependencies or f"{self.home}/dependencies"

    @property
    def klib(self) -> str:
        return f"{self.home}/klib"

    @property
    def stdlib(self) -> str:
        return f"{self.klib}/common/stdlib"

    def absolute(self, path: str) -> str:
        """Resolve a dependency-relative path against the dependencies root."""
        if os.path.isabs(path):
            return path
        return f"{self.dependencies_dir}/{path}"

    def default_natives(self, target: Target) -> str:
        return f"{self.home}/kiln/targets/{target.visible_name}/native"

    def runtime(self, target: Target) -> str:
        return self.runtime_override or f"{self.stdlib}/targets/{target.visible_name}/native/runtime.bc"

    def default_native_libraries(self, target: Target) -> list[str]:
        """Runtime bitcode plus every .bc under default_natives(), if present on disk."""
        found = []
        runtime = self.runtime(target)
        if os.path.isfile(runtime):
            found.append(runtime)
        natives = Path(self.default_natives(target))
        if natives.is_dir():
            found += [str(p) for p in sorted(natives.glob("*.bc")) if str(p) != runtime]
        return found


class TargetProperties:
    """String and string-list lookups for one target's property table."""

    def __init__(self, target: Target, table: dict, distribution: Distribution) -> None:
        self.target = target
        self.table = table
        self.distribution = distribution

    def target_string(self, name: str) -> str:
        value = self.table.get(name)
        if value is None:
            raise ConfigurationError("CE4006", name=name, target=self.target.visible_name)
        if isinstance(value, list):
            return " ".join(str(v) for v in value)
        return str(value)

    def optional_string(self, name: str) -> Optional[str]:
        if name not in self.table:
            return None
        return self.target_string(name)

    def target_list(self, name: str) -> list[str]:
        """List property; a plain string is split on whitespace."""
        value = self.table.get(name)
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v) for v in value]
        return str(value).split()

    # ------------------------------------------------------------------
    # Flag sets shared by every platform
    # ------------------------------------------------------------------

    @property
    def llvm_lto_noopt_flags(self) -> list[str]:
        return self.target_list("llvm_lto_noopt_flags")

    @property
    def llvm_lto_opt_flags(self) -> list[str]:
        return self.target_list("llvm_lto_opt_flags")

    @property
    def llvm_debug_opt_flags(self) -> list[str]:
        return self.target_list("llvm_debug_opt_flags")

    @property
    def entry_selector(self) -> list[str]:
        return self.target_list("entry_selector")

    @property
    def linker_optimization_flags(self) -> list[str]:
        return self.target_list("linker_optimization_flags")

    @property
    def linker_kiln_flags(self) -> list[str]:
        return self.target_list("linker_kiln_flags")

    @property
    def linker_no_debug_flags(self) -> list[str]:
        return self.target_list("linker_no_debug_flags")

    @property
    def linker_dynamic_flags(self) -> list[str]:
        return self.target_list("linker_dynamic_flags")

    @property
    def s2wasm_flags(self) -> list[str]:
        return self.target_list("s2wasm_flags")

    @property
    def clang_flags(self) -> list[str]:
        return self.target_list("clang_flags")

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def absolute_target_toolchain(self) -> str:
        return self.distribution.absolute(self.target_string("target_toolchain"))

    @property
    def absolute_target_sysroot(self) -> str:
        return self.distribution.absolute(self.target_string("target_sysroot"))

    @property
    def libffi_dir(self) -> Optional[str]:
        return self.optional_string("libffi_dir")

    @property
    def absolute_libffi_dir(self) -> Optional[str]:
        libffi = self.libffi_dir
        return self.distribution.absolute(libffi) if libffi is not None else None

    @property
    def os_version_min(self) -> str:
        return self.target_string("os_version_min")


class Properties:
    """The parsed properties: distribution plus per-target tables.

    `sources` lists every file merged into `data`, main file first.
    """

    def __init__(self, data: dict, path: str = "<memory>", runtime_file: Optional[str] = None,
                 sources: Optional[list[str]] = None) -> None:
        self.path = path
        self.data = data
        self.sources = sources if sources is not None else [path]
        dist = data.get("distribution", {})
        home = str(dist.get("home", KILN_HOME))
        self.distribution = Distribution(
            home=home,
            llvm_home=str(dist.get("llvm_home", f"{home}/llvm")),
            lib_lto=str(dist.get("lib_lto", "")),
            dependencies=str(dist.get("dependencies", "")),
            runtime_override=runtime_file or str(dist.get("runtime", "")),
        )

    @property
    def dependency_profiles(self) -> list[str]:
        return str(self.data.get("dependency_profiles", "")).split()

    def for_target(self, target: Target) -> TargetProperties:
        table = self.data.get("targets", {}).get(target.visible_name, {})
        return TargetProperties(target, table, self.distribution)


def default_properties_path() -> Path:
    env = os.environ.get(PROPERTIES_ENV)
    if env:
        return Path(env).expanduser()
    return KILN_HOME / PROPERTIES_NAME


def merge_properties(base: dict, overlay: dict) -> None:
    """Merge `overlay` into `base` in place; tables merge, other values replace."""
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merge_properties(base[key], value)
        else:
            base[key] = value


def keep_only_default_profiles(data: dict) -> None:
    """Restrict dependency resolution to the 'default' profile and pin Xcode.

    Raises:
        ConfigurationError: CE4007 unless `dependency_profiles` is exactly "default alt".
    """
    profiles = data.get("dependency_profiles")
    if profiles != "default alt":
        raise ConfigurationError(
            "CE4007", path="dependency_profiles",
            reason=f"expected 'default alt', got '{profiles}'")
    data["dependency_profiles"] = "default"
    data["use_fixed_xcode_version"] = "9.2"


def platform_property_files(home: str | Path, user_home: str | Path | None = None) -> list[Path]:
    """Overlay files in merge order: <home>/platforms/*.toml, then <user_home>/platforms/*.toml."""
    roots = [Path(home)]
    user = Path(user_home if user_home is not None else KILN_HOME)
    if user.resolve() != roots[0].resolve():
        roots.append(user)
    files: list[Path] = []
    for root in roots:
        files += sorted((root / "platforms").glob("*.toml"))
    return files


def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigurationError("CE4007", path=str(path), reason=e.strerror or str(e))
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError("CE4007", path=str(path), reason=str(e))


def load_properties(path: Path | None = None, user_home: Path | None = None,
                    only_default_profiles: bool = False,
                    runtime_file: Optional[str] = None) -> Properties:
    """Load the main properties file and merge the platform overlays over it.

    Later files win: the main file (default: $KILN_PROPERTIES or
    ~/.kiln/kiln.toml), then <home>/platforms/*.toml, then
    ~/.kiln/platforms/*.toml, each directory in file-name order.

    Raises:
        ConfigurationError: CE4007 if a file is missing or not valid TOML.
    """
    if path is None:
        path = default_properties_path()
    data = _read_toml(path)
    home = data.get("distribution", {}).get("home", KILN_HOME)
    sources = [str(path)]
    for overlay in platform_property_files(home, user_home):
        merge_properties(data, _read_toml(overlay))
        sources.append(str(overlay))
    if only_default_profiles:
        keep_only_default_profiles(data)
    return Properties(data, str(path), runtime_file, sources)


def load_properties_from_string(text: str) -> Properties:
    """Load properties from a TOML string."""
    return Properties(tomllib.loads(text))
