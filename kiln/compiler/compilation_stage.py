"""Bitcode to object code: llvm-link, opt, llc, llvm-ar.

WebAssembly takes a separate route through assembly text (llc -> s2wasm ->
wasm-as), since its toolchain has no direct bitcode-to-object step.
"""
from __future__ import annotations

from typing import Optional

from kiln.backend.platform_detect import Target
from kiln.compiler.context import BackendSetup, Context


class CompilationStage:

    def __init__(self, setup: BackendSetup) -> None:
        self.context = setup.context
        self.platform = setup.platform
        self.target = setup.target
        self.optimize = setup.optimize
        self.debug = setup.debug
        self.executor = setup.executor
        self.temp_files = setup.context.temp_files

    def produce_object_files(self, bitcode_files: list[str]) -> list[str]:
        if self.target == Target.WASM32:
            return [self.bitcode_to_wasm(bitcode_files)]
        if len(bitcode_files) == 1:
            return [self._llc(self._opt(bitcode_files[0]))]
        return [self._llc(self._opt(self._link(bitcode_files)))]

    def produce_static_library(self, bitcode_files: list[str], name: Optional[str] = None) -> str:
        if self.target == Target.WASM32:
            object_files = [self.bitcode_to_wasm(bitcode_files)]
        else:
            object_files = [self._llc(self._opt(f)) for f in bitcode_files]
        return self._llvm_ar(object_files, name)

    def _temporary(self, name: str, suffix: str) -> str:
        return self.temp_files.create(name, suffix)

    def _link(self, files: list[str]) -> str:
        linked = self._temporary("linked", ".o")
        self.executor.host_llvm_tool("llvm-link", [*files, "-o", linked])
        return linked

    def _opt_level(self) -> str:
        if self.optimize:
            return "-O3"
        if self.debug:
            return "-O0"
        return "-O1"

    def _codegen_flags(self) -> list[str]:
        if self.optimize:
            return self.platform.llvm_lto_opt_flags
        if self.debug:
            return self.platform.llvm_debug_opt_flags
        return self.platform.llvm_lto_noopt_flags

    def _opt(self, file: str) -> str:
        optimized = self._temporary("optimized", ".bc")
        self.executor.host_llvm_tool("opt", [file, self._opt_level(), "-o", optimized])
        return optimized

    def _llc(self, file: str) -> str:
        compiled = self._temporary("compiled", ".o")
        args = [file, *self._codegen_flags(), "-filetype=obj", "-o", compiled]
        self.executor.host_llvm_tool("llc", args)
        return compiled

    def _llvm_ar(self, files: list[str], name: Optional[str] = None) -> str:
        output = self.temp_files.named(name) if name else self._temporary("lib", ".a")
        self.executor.host_llvm_tool("llvm-ar", ["rcs", output, *files])
        return output

    def bitcode_to_wasm(self, bitcode_files: list[str]) -> str:
        combined_bc = self._temporary("combined", ".bc")
        self.executor.host_llvm_tool("llvm-link", [*bitcode_files, "-o", combined_bc])

        combined_s = self._temporary("combined", ".s")
        self.executor.target_tool("llc", combined_bc, "-o", combined_s)

        combined_wast = self._temporary("combined", ".wast")
        self.executor.target_tool("s2wasm", combined_s, "-o", combined_wast, *self.platform.s2wasm_flags)

        combined_wasm = self._temporary("combined", ".wasm")
        combined_smap = self._temporary("combined", ".smap")
        self.executor.target_tool("wasm-as", combined_wast, "-o", combined_wasm, "-g", "-s", combined_smap)
        return combined_wasm


def compile_object_files(context: Context, bitcode_files: list[str]) -> list[str]:
    return CompilationStage(context.setup).produce_object_files(bitcode_files)


def compile_static_library(context: Context, bitcode_files: list[str],
                           name: Optional[str] = None) -> str:
    return CompilationStage(context.setup).produce_static_library(bitcode_files, name)
