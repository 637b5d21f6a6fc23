"""Output mode selection: raw bitcode, packaged library, or linked program."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import llvmlite.binding as llvm

from kiln.backend.command import Command
from kiln.backend.library_writer import build_library
from kiln.backend.platform_detect import Family
from kiln.compiler.compilation_stage import compile_object_files, compile_static_library
from kiln.compiler.config import CompilerOutputKind
from kiln.compiler.context import Context
from kiln.compiler.link_stage import LinkStage
from kiln.internals.errors import BitcodeLinkError, ConfigurationError


class CompilerOutputProducer:

    def __init__(self, context: Context) -> None:
        self.context = context
        self.config = context.config

    def produce(self) -> Optional[str]:
        """Produce the artifact; returns its path, or None after a reported failure."""
        raise NotImplementedError


class BitcodeProducer(CompilerOutputProducer):
    """Writes the in-memory module straight to disk. No tools run."""

    def produce(self) -> Optional[str]:
        output = self.config.output_file
        Path(output).write_bytes(self.context.llvm_module.as_bitcode())
        return output


class LibraryProducer(CompilerOutputProducer):

    def produce_library(self):
        config = self.config
        library = build_library(
            config.native_libraries,
            config.include_binaries,
            self.context.libraries_for_manifest,
            self.context.serialized_link_data,
            config.abi_version,
            config.target,
            config.output_file,
            config.module_name,
            self.context.llvm_module,
            config.nopack,
            config.manifest_file,
            self.context.escape_analysis,
            self.context.data_flow_graph,
            staging_dir=self.context.temp_files.named("library"),
        )
        return library, library.main_bitcode_file_name

    def produce(self) -> Optional[str]:
        library, program_bitcode = self.produce_library()

        for native in self.config.native_libraries:
            archive_name = os.path.basename(native) + ".a"
            library.add_included_binary(compile_static_library(self.context, [native], archive_name))

        main_archive = compile_static_library(self.context, [program_bitcode],
                                              self.config.module_name + ".a")
        library.add_included_binary(main_archive)
        return str(library.commit())


class ProgramProducer(CompilerOutputProducer):

    def _generate_c_adapter_bitcode(self) -> Optional[str]:
        """Compile the C interop adapter for dynamic libraries, if there is one."""
        source = self.config.c_adapter_source
        if self.config.produce is not CompilerOutputKind.DYNAMIC or not source:
            return None
        setup = self.context.setup
        output = self.context.temp_files.c_adapter_bitcode_name
        setup.executor.run_tool(Command(
            self.context.distribution.clang,
            ("-x", "c++", "-c", "-emit-llvm", *setup.platform.clang_flags, source, "-o", output),
        ))
        return output

    def _link_native_libraries(self, libraries: list[str]) -> None:
        module = self.context.llvm_module
        for library in libraries:
            try:
                native = llvm.parse_bitcode(Path(library).read_bytes())
                module.link_in(native)
            except (OSError, RuntimeError) as e:
                raise BitcodeLinkError(library, str(e)) from e

    def produce_program(self) -> str:
        generated = self._generate_c_adapter_bitcode()
        self._link_native_libraries([
            *self.config.native_libraries,
            *self.config.default_native_libraries,
            *([generated] if generated else []),
        ])

        program = self.context.temp_files.native_binary_file_name
        Path(program).write_bytes(self.context.llvm_module.as_bitcode())
        return program

    def produce(self) -> Optional[str]:
        program = self.produce_program()
        object_files = compile_object_files(self.context, [program])
        return LinkStage(self.context.setup).link_stage(object_files)


_PRODUCERS: dict[CompilerOutputKind, type[CompilerOutputProducer]] = {
    CompilerOutputKind.BITCODE: BitcodeProducer,
    CompilerOutputKind.LIBRARY: LibraryProducer,
    CompilerOutputKind.PROGRAM: ProgramProducer,
    CompilerOutputKind.DYNAMIC: ProgramProducer,
    CompilerOutputKind.FRAMEWORK: ProgramProducer,
}


def producer_for(context: Context) -> CompilerOutputProducer:
    kind = context.config.produce
    producer = _PRODUCERS.get(kind)
    if producer is None:
        raise ConfigurationError("CE4001", kind=str(getattr(kind, "value", kind)))
    target = context.config.target
    if kind is CompilerOutputKind.FRAMEWORK and target.family is not Family.APPLE:
        raise ConfigurationError("CE4005", target=target.visible_name)
    return producer(context)


def produce(context: Context) -> Optional[str]:
    """Run the selected mode inside one temporary-file scope.

    Returns:
        Path of the produced artifact, or None when the link reported errors.
    """
    producer = producer_for(context)
    with context.temp_files:
        return producer.produce()
