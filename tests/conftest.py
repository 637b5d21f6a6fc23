from __future__ import annotations

import os
from pathlib import Path

import pytest

from kiln.backend.executor import ToolchainExecutor
from kiln.backend.platform_detect import Target
from kiln.backend.properties import load_properties_from_string
from kiln.compiler.config import CompilerConfig, CompilerOutputKind
from kiln.compiler.context import Context
from kiln.internals.errors import ExternalToolFailure

PROPERTIES = """
[distribution]
home = "/kiln"
llvm_home = "/llvm"
lib_lto = "/llvm/lib/libLTO.dylib"
dependencies = "/deps"

[targets.linux_x64]
target_toolchain = "gcc"
target_sysroot = "sysroot"
dynamic_linker = "/lib64/ld-linux-x86-64.so.2"
lib_gcc = "lib/gcc/x86_64-unknown-linux-gnu/4.8.5"
abi_specific_libraries = "usr/lib64"
llvm_lto_opt_flags = "-O3 -function-sections"
llvm_lto_noopt_flags = "-O1"
llvm_debug_opt_flags = "-O0 -g"
linker_optimization_flags = "--gc-sections"
linker_no_debug_flags = "-S"
linker_dynamic_flags = "-shared"
linker_kiln_flags = "-lpthread -ldl"
entry_selector = "--defsym main=Konan_main"
plugin_optimization_flags = "-plugin-opt=mcpu=x86-64"
libffi_dir = "libffi"

[targets.linux_mips32]
target_toolchain = "mips-gcc"
target_sysroot = "mips-sysroot"
dynamic_linker = "/lib/ld.so.1"
lib_gcc = "lib/gcc/mips-unknown-linux-gnu/4.9.4"
linker_kiln_flags = "-lpthread"

[targets.macos_x64]
target_toolchain = "/xcode"
target_sysroot = "/xcode/sdk"
arch = "x86_64"
os_version_min_flag_ld = "-macosx_version_min"
os_version_min = "10.11"
entry_selector = ["-alias", "_Konan_main", "_main"]
linker_no_debug_flags = "-S"
linker_dynamic_flags = "-dylib"
linker_kiln_flags = "-lc++"
llvm_debug_opt_flags = "-O0"

[targets.ios_arm64]
target_toolchain = "/xcode"
target_sysroot = "/xcode/ios-sdk"
arch = "arm64"
os_version_min_flag_ld = "-iphoneos_version_min"
os_version_min = "9.0"
linker_dynamic_flags = "-dylib"

[targets.android_arm64]
target_toolchain = "/ndk"
target_sysroot = "/ndk/sysroot"
linker_no_debug_flags = "-Wl,-S"
linker_dynamic_flags = "-shared"
linker_kiln_flags = "-lm"
entry_selector = "-Wl,--defsym,main=Konan_main"

[targets.mingw_x64]
target_toolchain = "/mingw"
target_sysroot = "/mingw"
linker_kiln_flags = "-static-libgcc -lws2_32"

[targets.wasm32]
target_toolchain = "/wasm"
target_sysroot = "/wasm"
s2wasm_flags = "--allocate-stack 1048576"
"""


class FakeModule:
    """Stands in for an llvmlite module: serializes to fixed bytes, records links."""

    def __init__(self, data: bytes = b"BC\xc0\xde") -> None:
        self.data = data
        self.linked = []

    def as_bitcode(self) -> bytes:
        return self.data

    def link_in(self, other) -> None:
        self.linked.append(other)


def _touch_outputs(args: tuple[str, ...], tool: str) -> None:
    outputs = []
    if "-o" in args:
        outputs.append(args[args.index("-o") + 1])
    if os.path.basename(tool) == "llvm-ar" and args:
        outputs.append(args[1])
    for out in outputs:
        path = Path(out)
        if path.parent.is_dir():
            path.write_bytes(b"")


class RecordingExecutor(ToolchainExecutor):
    """Records commands instead of running them.

    Outputs named by `-o` (and llvm-ar archives) are created empty so that
    later stages find their inputs. A tool whose basename equals `fail_on`
    fails with exit code 1.
    """

    def __init__(self, llvm_bin: str, target_toolchain: str, fail_on: str | None = None) -> None:
        super().__init__(llvm_bin, target_toolchain)
        self.commands = []
        self.fail_on = fail_on

    def run_tool(self, command) -> None:
        self.commands.append(command)
        if self.fail_on and os.path.basename(command.tool) == self.fail_on:
            raise ExternalToolFailure(command.tool, 1)
        _touch_outputs(command.args, command.tool)

    @property
    def tools(self) -> list[str]:
        return [os.path.basename(c.tool) for c in self.commands]

    def find(self, tool: str):
        return [c for c in self.commands if os.path.basename(c.tool) == tool]


@pytest.fixture
def properties():
    return load_properties_from_string(PROPERTIES)


@pytest.fixture
def make_context(tmp_path, properties):
    """Build a Context whose backend setup runs a RecordingExecutor."""

    def _make(target: Target = Target.LINUX_X64,
              produce: CompilerOutputKind = CompilerOutputKind.PROGRAM,
              fail_on: str | None = None, module=None, **overrides) -> Context:
        overrides.setdefault("output_name", str(tmp_path / "out"))
        config = CompilerConfig(target=target, produce=produce, **overrides)
        context = Context(config, properties, llvm_module=module or FakeModule())
        if produce is not CompilerOutputKind.BITCODE:
            setup = context.setup
            setup.executor = RecordingExecutor(
                setup.distribution.llvm_bin, setup.platform.target_toolchain, fail_on)
        return context

    return _make
