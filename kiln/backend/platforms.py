"""
Per-family platform descriptors.

Each descriptor knows how to build the link command for its target family,
which files are linkable static libraries there, and how the link command is
carried out. `platform_for()` is the only place that switches on the target;
everything downstream works against the `PlatformFlags` interface.

To write `link_command()` for a new family, start from the output of
`clang -v -save-temps` on that target.
"""
from __future__ import annotations

from kiln.backend.command import Command, CommandBuilder
from kiln.backend.link_strategies import (
    CopyObjectAndLinkScripts,
    LinkStrategy,
    RunLinker,
    RunLinkerThenDsymutil,
)
from kiln.backend.platform_detect import Family, Target
from kiln.backend.properties import Distribution, TargetProperties
from kiln.internals.errors import ConfigurationError


def is_unix_static_lib(path: str) -> bool:
    return path.endswith(".a")


def is_windows_static_lib(path: str) -> bool:
    return path.endswith(".lib")


class PlatformFlags:
    """Toolchain paths and flag sets of one target, plus its link recipe."""

    use_compiler_driver_as_linker = False

    def __init__(self, target: Target, distribution: Distribution,
                 properties: TargetProperties) -> None:
        self.target = target
        self.distribution = distribution
        self.properties = properties

        self.llvm_lto_noopt_flags = properties.llvm_lto_noopt_flags
        self.llvm_lto_opt_flags = properties.llvm_lto_opt_flags
        self.entry_selector = properties.entry_selector
        self.linker_optimization_flags = properties.linker_optimization_flags
        self.linker_kiln_flags = properties.linker_kiln_flags
        self.linker_no_debug_flags = properties.linker_no_debug_flags
        self.linker_dynamic_flags = properties.linker_dynamic_flags
        self.llvm_debug_opt_flags = properties.llvm_debug_opt_flags
        self.s2wasm_flags = properties.s2wasm_flags
        self.clang_flags = properties.clang_flags
        self.target_toolchain = properties.absolute_target_toolchain
        self.target_sysroot = properties.absolute_target_sysroot

        libffi = properties.absolute_libffi_dir
        self.target_libffi = [f"{libffi}/lib/libffi.a"] if libffi is not None else []

    @property
    def stderr_filters(self) -> dict[str, str]:
        """Tool path -> benign stderr text to drop for that tool."""
        return {}

    def link_command(self, object_files: list[str], executable: str, optimize: bool,
                     debug: bool, dynamic: bool, static_libraries: list[str]) -> Command:
        raise NotImplementedError

    def link_command_suffix(self) -> list[str]:
        return []

    def filter_static_libraries(self, binaries: list[str]) -> list[str]:
        raise NotImplementedError

    def link_static_libraries(self, binaries: list[str]) -> list[str]:
        # Passed to the linker as absolute paths.
        return self.filter_static_libraries(binaries)

    def link_strategy(self, object_files: list[str], executable: str, debug: bool) -> LinkStrategy:
        return RunLinker()

    def _append_common_flags(self, cmd: CommandBuilder, optimize: bool, debug: bool,
                             dynamic: bool) -> None:
        if optimize:
            cmd.append_flags(self.linker_optimization_flags)
        if not debug:
            cmd.append_flags(self.linker_no_debug_flags)
        if dynamic:
            cmd.append_flags(self.linker_dynamic_flags)


class AndroidPlatform(PlatformFlags):

    use_compiler_driver_as_linker = True

    def __init__(self, target: Target, distribution: Distribution,
                 properties: TargetProperties) -> None:
        super().__init__(target, distribution, properties)
        self.clang = f"{self.target_toolchain}/bin/clang"

    def filter_static_libraries(self, binaries: list[str]) -> list[str]:
        return [b for b in binaries if is_unix_static_lib(b)]

    def link_command(self, object_files: list[str], executable: str, optimize: bool,
                     debug: bool, dynamic: bool, static_libraries: list[str]) -> Command:
        # liblog.so must be linked in, the runtime logs through it.
        cmd = CommandBuilder(self.clang)
        cmd.append_flags(["-o", executable, "-fPIC", "-shared", "-llog"])
        cmd.append_flags(object_files)
        self._append_common_flags(cmd, optimize, debug, dynamic)
        cmd.append_flags(self.linker_kiln_flags)
        return cmd.build()


class MacOSBasedPlatform(PlatformFlags):

    DSYMUTIL_MAIN_WARNING = "warning: could not find object file symbol for symbol _main"

    def __init__(self, target: Target, distribution: Distribution,
                 properties: TargetProperties) -> None:
        super().__init__(target, distribution, properties)
        self.linker = f"{self.target_toolchain}/usr/bin/ld"
        self.dsymutil = f"{distribution.llvm_bin}/llvm-dsymutil"
        self.lib_lto = distribution.lib_lto

    @property
    def os_version_min(self) -> list[str]:
        return [
            self.properties.target_string("os_version_min_flag_ld"),
            self.properties.os_version_min + ".0",
        ]

    @property
    def stderr_filters(self) -> dict[str, str]:
        # The linker aliases _main to the runtime entry point; dsymutil has
        # no such option and warns about the missing _main symbol.
        return {self.dsymutil: self.DSYMUTIL_MAIN_WARNING}

    def filter_static_libraries(self, binaries: list[str]) -> list[str]:
        return [b for b in binaries if is_unix_static_lib(b)]

    def link_command(self, object_files: list[str], executable: str, optimize: bool,
                     debug: bool, dynamic: bool, static_libraries: list[str]) -> Command:
        cmd = CommandBuilder(self.linker)
        cmd.append_flag("-demangle")
        cmd.append_flags(["-object_path_lto", "temporary.o", "-lto_library", self.lib_lto])
        cmd.append_flags(["-dynamic", "-arch", self.properties.target_string("arch")])
        cmd.append_flags(self.os_version_min)
        cmd.append_flags(["-syslibroot", self.target_sysroot, "-o", executable])
        cmd.append_flags(object_files)
        for lib in static_libraries:
            cmd.append_flags(["-force_load", lib])
        self._append_common_flags(cmd, optimize, debug, dynamic)
        cmd.append_flags(self.linker_kiln_flags)
        cmd.append_flag("-lSystem")
        return cmd.build()

    def link_strategy(self, object_files: list[str], executable: str, debug: bool) -> LinkStrategy:
        if debug:
            tool, *args = self.dsymutil_command(executable)
            return RunLinkerThenDsymutil(Command(tool, tuple(args)))
        return RunLinker()

    def dsymutil_command(self, executable: str) -> list[str]:
        return [self.dsymutil, executable]

    def dsymutil_dry_run_verbose_command(self, executable: str) -> list[str]:
        return [self.dsymutil, "-dump-debug-map", executable]


class LinuxBasedPlatform(PlatformFlags):

    def __init__(self, target: Target, distribution: Distribution,
                 properties: TargetProperties) -> None:
        super().__init__(target, distribution, properties)
        self.llvm_lib = distribution.llvm_lib
        self.lib_gcc = f"{self.target_sysroot}/{properties.target_string('lib_gcc')}"
        self.linker = f"{self.target_toolchain}/bin/ld.gold"
        self.plugin_optimization_flags = properties.target_list("plugin_optimization_flags")
        self.specific_libs = [
            f"-L{self.target_sysroot}/{lib}"
            for lib in properties.target_list("abi_specific_libraries")
        ]

    def filter_static_libraries(self, binaries: list[str]) -> list[str]:
        return [b for b in binaries if is_unix_static_lib(b)]

    def link_command(self, object_files: list[str], executable: str, optimize: bool,
                     debug: bool, dynamic: bool, static_libraries: list[str]) -> Command:
        sysroot = self.target_sysroot
        cmd = CommandBuilder(self.linker)
        cmd.append_flags([
            f"--sysroot={sysroot}",
            "-export-dynamic",
            "-z", "relro",
            "--build-id",
            "--eh-frame-hdr",
            "-dynamic-linker", self.properties.target_string("dynamic_linker"),
            "-o", executable,
        ])
        for lib in static_libraries:
            cmd.append_flags(["--whole-archive", lib])
        if not dynamic:
            cmd.append_flag(f"{sysroot}/usr/lib64/crt1.o")
        cmd.append_flag(f"{sysroot}/usr/lib64/crti.o")
        cmd.append_flag(f"{self.lib_gcc}/crtbeginS.o" if dynamic else f"{self.lib_gcc}/crtbegin.o")
        cmd.append_flags([f"-L{self.llvm_lib}", f"-L{self.lib_gcc}"])
        if not self.target.is_mips:
            # MIPS doesn't support hash-style=gnu
            cmd.append_flag("--hash-style=gnu")
        cmd.append_flags(self.specific_libs)
        cmd.append_flags([f"-L{sysroot}/../lib", f"-L{sysroot}/lib", f"-L{sysroot}/usr/lib"])
        if optimize:
            cmd.append_flags(["-plugin", f"{self.llvm_lib}/LLVMgold.so"])
            cmd.append_flags(self.plugin_optimization_flags)
        self._append_common_flags(cmd, optimize, debug, dynamic)
        cmd.append_flags(object_files)
        cmd.append_flags(self.linker_kiln_flags)
        cmd.append_flags(["-lgcc", "--as-needed", "-lgcc_s", "--no-as-needed",
                          "-lc", "-lgcc", "--as-needed", "-lgcc_s", "--no-as-needed"])
        cmd.append_flag(f"{self.lib_gcc}/crtendS.o" if dynamic else f"{self.lib_gcc}/crtend.o")
        cmd.append_flag(f"{sysroot}/usr/lib64/crtn.o")
        return cmd.build()


class MingwPlatform(PlatformFlags):

    use_compiler_driver_as_linker = True

    def __init__(self, target: Target, distribution: Distribution,
                 properties: TargetProperties) -> None:
        super().__init__(target, distribution, properties)
        self.linker = f"{self.target_toolchain}/bin/clang++"

    def filter_static_libraries(self, binaries: list[str]) -> list[str]:
        return [b for b in binaries if is_windows_static_lib(b) or is_unix_static_lib(b)]

    def link_command(self, object_files: list[str], executable: str, optimize: bool,
                     debug: bool, dynamic: bool, static_libraries: list[str]) -> Command:
        cmd = CommandBuilder(self.linker)
        cmd.append_flags(["-o", executable])
        cmd.append_flags(object_files)
        self._append_common_flags(cmd, optimize, debug, dynamic)
        return cmd.build()

    def link_command_suffix(self) -> list[str]:
        return self.linker_kiln_flags


class WasmPlatform(PlatformFlags):

    def filter_static_libraries(self, binaries: list[str]) -> list[str]:
        return []

    def link_command(self, object_files: list[str], executable: str, optimize: bool,
                     debug: bool, dynamic: bool, static_libraries: list[str]) -> Command:
        # Nothing to invoke; see CopyObjectAndLinkScripts.
        return Command("")

    def link_strategy(self, object_files: list[str], executable: str, debug: bool) -> LinkStrategy:
        return CopyObjectAndLinkScripts(object_files, executable)


_PLATFORMS = {
    Family.LINUX: LinuxBasedPlatform,
    Family.APPLE: MacOSBasedPlatform,
    Family.ANDROID: AndroidPlatform,
    Family.MINGW: MingwPlatform,
    Family.WASM: WasmPlatform,
}


def platform_for(target: Target, distribution: Distribution,
                 properties: TargetProperties) -> PlatformFlags:
    """Construct the platform descriptor for `target`.

    Raises:
        ConfigurationError: CE4000 if no descriptor handles the target.
    """
    if not isinstance(target, Target):
        raise ConfigurationError("CE4000", target=str(target))
    return _PLATFORMS[target.family](target, distribution, properties)
