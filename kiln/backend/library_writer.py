"""Packaged library (.klib) writer.

A library is first laid out as a directory, then packed into a gzipped
tarball unless packing is disabled:

    <name>/
        manifest                         -- MessagePack-encoded dict
        linkdata/module                  -- serialized link data
        linkdata/escape_analysis         -- (optional)
        linkdata/dataflow_graph          -- (optional)
        targets/<target>/program/program.bc
        targets/<target>/native/<file>   -- native bitcode libraries
        targets/<target>/included/<file> -- included static archives

The manifest carries the library name, ABI and compiler versions, the
target, the libraries it depends on, and the entries of the user manifest
file, if one was given.

The layout is staged outside the output location and only moved or packed
there by `commit()`, so a failed run never leaves a partial library behind.
"""
from __future__ import annotations

import shutil
import tarfile
import tempfile
import tomllib
from pathlib import Path
from typing import Optional

import msgpack

from kiln import __version__ as compiler_version
from kiln.backend.platform_detect import Target
from kiln.internals.errors import LibraryWriteError

KLIB_SUFFIX = ".klib"
MANIFEST_NAME = "manifest"


class KlibWriter:
    """Lays out one library; `commit()` finishes it."""

    def __init__(self, output: str, library_name: str, target: Target,
                 abi_version: int, nopack: bool = False,
                 staging_dir: Optional[str] = None) -> None:
        self.output = Path(str(output).removesuffix(KLIB_SUFFIX))
        self.library_name = library_name
        self.target = target
        self.abi_version = abi_version
        self.nopack = nopack
        self.depends: list[str] = []
        self.native_targets: list[str] = []
        self.properties: dict = {}

        self._owns_staging = staging_dir is None
        self.staging_dir = Path(staging_dir or tempfile.mkdtemp(prefix="klib-"))
        self.root = self.staging_dir / self.output.name
        self.linkdata_dir = self.root / "linkdata"
        self.target_dir = self.root / "targets" / target.visible_name
        self.program_dir = self.target_dir / "program"
        self.native_dir = self.target_dir / "native"
        self.included_dir = self.target_dir / "included"

        try:
            if self.root.exists():
                shutil.rmtree(self.root)
            for d in (self.linkdata_dir, self.program_dir, self.native_dir, self.included_dir):
                d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LibraryWriteError("CE4008", path=str(self.root), reason=e.strerror or str(e))

    @property
    def main_bitcode_file_name(self) -> str:
        return str(self.program_dir / "program.bc")

    @property
    def packed_path(self) -> Path:
        return self.output.with_name(self.output.name + KLIB_SUFFIX)

    def write_module(self, llvm_module) -> None:
        self._write(Path(self.main_bitcode_file_name), llvm_module.as_bitcode())

    def add_link_data(self, data: bytes) -> None:
        self._write(self.linkdata_dir / "module", data)

    def add_escape_analysis(self, data: bytes) -> None:
        self._write(self.linkdata_dir / "escape_analysis", data)

    def add_data_flow_graph(self, data: bytes) -> None:
        self._write(self.linkdata_dir / "dataflow_graph", data)

    def add_native_bitcode(self, library: str) -> None:
        self._copy(library, self.native_dir)
        self.native_targets.append(Path(library).name)

    def add_included_binary(self, library: str) -> None:
        self._copy(library, self.included_dir)

    def add_manifest_file(self, manifest_file: str) -> None:
        try:
            with open(manifest_file, "rb") as f:
                self.properties.update(tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise LibraryWriteError("CE4008", path=str(self.root), reason=f"bad manifest file: {e}")

    def manifest(self) -> dict:
        return {
            "unique_name": self.library_name,
            "abi_version": self.abi_version,
            "compiler_version": compiler_version,
            "target": self.target.visible_name,
            "depends": list(self.depends),
            "native_targets": list(self.native_targets),
            "properties": self.properties,
        }

    def commit(self) -> Path:
        """Write the manifest, then publish the staged layout.

        Without nopack the layout is packed into `<output>.klib`; with nopack
        the directory itself is moved to `<output>`.

        Returns:
            Path to the packed .klib file, or to the directory with nopack.
        """
        self._write(self.root / MANIFEST_NAME, msgpack.packb(self.manifest(), use_bin_type=True))
        try:
            if self.nopack:
                if self.output.exists():
                    shutil.rmtree(self.output)
                shutil.move(str(self.root), str(self.output))
                return self.output
            packed = self.staging_dir / self.packed_path.name
            with tarfile.open(packed, "w:gz") as tar:
                tar.add(self.root, arcname=self.output.name)
            shutil.move(str(packed), str(self.packed_path))
        except (OSError, tarfile.TarError) as e:
            raise LibraryWriteError("CE4008", path=str(self.output), reason=str(e))
        finally:
            self.discard()
        return self.packed_path

    def discard(self) -> None:
        """Drop the staged layout. Only a staging directory this writer made is removed."""
        if self._owns_staging:
            shutil.rmtree(self.staging_dir, ignore_errors=True)
        else:
            shutil.rmtree(self.root, ignore_errors=True)
            (self.staging_dir / self.packed_path.name).unlink(missing_ok=True)

    def _write(self, path: Path, data: bytes) -> None:
        try:
            path.write_bytes(data)
        except OSError as e:
            raise LibraryWriteError("CE4008", path=str(self.root), reason=e.strerror or str(e))

    def _copy(self, src: str, dest_dir: Path) -> None:
        try:
            shutil.copyfile(src, dest_dir / Path(src).name)
        except OSError as e:
            raise LibraryWriteError("CE4008", path=str(self.root), reason=f"{src}: {e.strerror or e}")


def build_library(native_libraries: list[str], included_binaries: list[str],
                  needed_libraries: list[str], link_data: bytes, abi_version: int,
                  target: Target, output: str, library_name: str, llvm_module,
                  nopack: bool, manifest: Optional[str],
                  escape_analysis: Optional[bytes] = None,
                  data_flow_graph: Optional[bytes] = None,
                  staging_dir: Optional[str] = None) -> KlibWriter:
    """Lay out everything except the compiled binaries, which the caller adds."""
    library = KlibWriter(output, library_name, target, abi_version, nopack, staging_dir)
    library.write_module(llvm_module)
    library.add_link_data(link_data)
    for native in native_libraries:
        library.add_native_bitcode(native)
    for binary in included_binaries:
        library.add_included_binary(binary)
    library.depends.extend(needed_libraries)
    if manifest:
        library.add_manifest_file(manifest)
    if escape_analysis is not None:
        library.add_escape_analysis(escape_analysis)
    if data_flow_graph is not None:
        library.add_data_flow_graph(data_flow_graph)
    return library


def read_manifest(path: Path) -> dict:
    """Read the manifest of a packed .klib or of an unpacked library directory."""
    if path.is_dir():
        return msgpack.unpackb((path / MANIFEST_NAME).read_bytes(), raw=False)
    with tarfile.open(path, "r:gz") as tar:
        for member in tar.getmembers():
            if member.name.count("/") == 1 and member.name.endswith(f"/{MANIFEST_NAME}"):
                f = tar.extractfile(member)
                if f is None:
                    break
                return msgpack.unpackb(f.read(), raw=False)
    raise LibraryWriteError("CE4008", path=str(path), reason=f"no {MANIFEST_NAME} found")
