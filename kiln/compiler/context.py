"""Shared state of one backend run."""
from __future__ import annotations

from functools import cached_property
from typing import Optional

from kiln.backend.executor import ToolchainExecutor
from kiln.backend.platforms import PlatformFlags, platform_for
from kiln.backend.properties import Properties
from kiln.compiler.config import CompilerConfig, CompilerOutputKind
from kiln.compiler.temp_files import TempFiles
from kiln.internals import errors as er
from kiln.internals.report import Reporter


class Context:
    """Configuration, diagnostics and front-end products for one run."""

    def __init__(self, config: CompilerConfig, properties: Properties,
                 reporter: Optional[Reporter] = None, llvm_module=None,
                 serialized_link_data: bytes = b"",
                 libraries_for_manifest: Optional[list[str]] = None,
                 escape_analysis: Optional[bytes] = None,
                 data_flow_graph: Optional[bytes] = None) -> None:
        self.config = config
        self.properties = properties
        self.distribution = properties.distribution
        self.reporter = reporter or Reporter()
        self.llvm_module = llvm_module
        self.serialized_link_data = serialized_link_data
        self.libraries_for_manifest = libraries_for_manifest or []
        self.escape_analysis = escape_analysis
        self.data_flow_graph = data_flow_graph
        self.temp_files = TempFiles()

    @property
    def libraries_to_link(self):
        return self.config.libraries_to_link

    def log(self, message: str) -> None:
        if self.config.verbose:
            print(message)

    def report_compilation_error(self, stage: str = "link") -> None:
        er.emit(self.reporter, er.ERR.CE4003, stage)

    @cached_property
    def setup(self) -> BackendSetup:
        return BackendSetup(self)


class BackendSetup:
    """Information required by the compilation and link stages.

    Built once per run; the platform descriptor and executor are shared by
    every stage.
    """

    def __init__(self, context: Context) -> None:
        self.context = context
        self.config = context.config
        self.target = context.config.target
        self.distribution = context.distribution
        self.optimize = context.config.optimize
        self.debug = context.config.debug
        self.produce = context.config.produce
        self.dynamic = self.produce in (CompilerOutputKind.DYNAMIC, CompilerOutputKind.FRAMEWORK)

        self.platform: PlatformFlags = platform_for(
            self.target, self.distribution, context.properties.for_target(self.target))
        self.executor = ToolchainExecutor(
            self.distribution.llvm_bin,
            self.platform.target_toolchain,
            log=context.log,
            stderr_filters=self.platform.stderr_filters,
        )
