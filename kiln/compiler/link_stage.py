"""Final link: object files plus static libraries into the requested artifact."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from kiln.backend.platform_detect import Target
from kiln.compiler.config import CompilerOutputKind
from kiln.compiler.context import BackendSetup
from kiln.internals import errors as er
from kiln.internals.errors import ConfigurationError, ExternalToolFailure

_STATIC_LIBRARY_SUFFIXES = (".a", ".lib")


class LinkStage:

    def __init__(self, setup: BackendSetup) -> None:
        self.context = setup.context
        self.platform = setup.platform
        self.target = setup.target
        self.optimize = setup.optimize
        self.debug = setup.debug
        self.config = setup.config
        self.executor = setup.executor
        self.dynamic = setup.dynamic
        self.nomain = self.config.nomain
        self.libraries = self.context.libraries_to_link

    def as_linker_args(self, args: list[str]) -> list[str]:
        """Turn compiler-driver `-Wl,a,b` arguments into plain linker ones.

        Left untouched when the platform links through its compiler driver.
        """
        if self.platform.use_compiler_driver_as_linker:
            return list(args)
        result: list[str] = []
        for arg in args:
            if arg.startswith("-Wl,"):
                result.extend(arg[4:].split(","))
            else:
                result.append(arg)
        return result

    # Ideally the launcher would declare a weak `main` aliasing the runtime
    # entry point, but weak linking on macOS only works with dynamic
    # libraries. So the linker aliases it (`-alias _Konan_main _main` on
    # macOS, the equivalent elsewhere).
    @property
    def entry_point_selector(self) -> list[str]:
        if self.nomain or self.dynamic:
            return []
        return self.platform.entry_selector

    def _framework_output(self) -> tuple[str, list[str]]:
        framework = Path(self.config.output_file)
        dylib_name = framework.name.removesuffix(".framework")
        if self.target in (Target.IOS_ARM64, Target.IOS_X64):
            dylib_relative_path = dylib_name
        elif self.target == Target.MACOS_X64:
            dylib_relative_path = f"Versions/A/{dylib_name}"
        else:
            raise ConfigurationError("CE4005", target=self.target.visible_name)

        framework_linker_args = ["-install_name", f"@rpath/{framework.name}/{dylib_relative_path}"]
        dylib_path = framework / dylib_relative_path
        dylib_path.parent.mkdir(parents=True, exist_ok=True)
        return os.path.abspath(dylib_path), framework_linker_args

    def _static_libraries(self, included_binaries: list[str]) -> list[str]:
        static_libs = self.platform.link_static_libraries(included_binaries)
        for candidate in included_binaries:
            if candidate not in static_libs and candidate.endswith(_STATIC_LIBRARY_SUFFIXES):
                er.emit(self.context.reporter, er.ERR.CW4009, "link",
                        path=candidate, target=self.target.visible_name)
        return static_libs

    def link(self, object_files: list[str], default_libs: list[str], user_libs: list[str],
             library_linker_flags: list[str]) -> Optional[str]:
        """Link the artifact. Returns its path, or None once a failure was reported."""
        if self.config.produce is CompilerOutputKind.FRAMEWORK:
            executable, framework_linker_args = self._framework_output()
        else:
            executable, framework_linker_args = self.config.output_file, []

        included_binaries = default_libs + user_libs
        static_libs = self._static_libraries(included_binaries)

        command = (
            self.platform.link_command(object_files, executable, self.optimize, self.debug,
                                       self.dynamic, static_libs)
            .with_flags(self.platform.target_libffi)
            .with_flags(self.as_linker_args(self.config.linker_args))
            .with_flags(self.entry_point_selector)
            .with_flags(framework_linker_args)
            .with_flags(self.platform.link_command_suffix())
            .with_flags(library_linker_flags)
            .with_libraries(included_binaries)
        )
        strategy = self.platform.link_strategy(object_files, executable, self.debug)

        try:
            strategy.run(command, self.executor)
        except ExternalToolFailure:
            self.context.report_compilation_error("link")
            return None
        return executable

    def link_stage(self, object_files: list[str]) -> Optional[str]:
        self.context.log(f"# Compiler root: {self.context.distribution.home}")

        default_libs = [lib for lib in self.libraries if lib.is_default]
        user_libs = [lib for lib in self.libraries if not lib.is_default]
        library_linker_flags = [opt for lib in self.libraries for opt in lib.linker_opts]

        return self.link(
            object_files,
            [path for lib in default_libs for path in lib.included_paths],
            [path for lib in user_libs for path in lib.included_paths],
            library_linker_flags,
        )
