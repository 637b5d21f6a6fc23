"""Running external tools as child processes.

Children inherit the parent's standard streams so toolchain diagnostics
reach the user as they are printed. A tool registered in `stderr_filters`
instead has its stderr read line by line while it runs; lines containing the
registered benign text are dropped and everything else is forwarded.
"""
from __future__ import annotations

import subprocess
import sys
from typing import Callable, Mapping, Optional

from kiln.backend.command import Command
from kiln.internals.errors import ExternalToolFailure

# Exit code reported for a tool that could not be started at all.
EXIT_NOT_STARTED = 127


def _no_log(message: str) -> None:
    pass


class ProcessExecutor:
    """Synchronous child-process runner with one stderr filtering rule per tool."""

    def __init__(self, log: Optional[Callable[[str], None]] = None,
                 stderr_filters: Optional[Mapping[str, str]] = None) -> None:
        self.log = log or _no_log
        self.stderr_filters = dict(stderr_filters or {})

    def execute(self, command: Command) -> int:
        """Run `command` to completion and return its exit code."""
        argv = command.argv
        self.log("")
        self.log(" ".join(argv))

        benign = self.stderr_filters.get(command.tool)
        try:
            process = subprocess.Popen(
                argv,
                stderr=subprocess.PIPE if benign is not None else None,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            print(f"error: cannot run {command.tool}: {e.strerror or e}", file=sys.stderr)
            return EXIT_NOT_STARTED

        try:
            if benign is not None:
                for line in process.stderr:
                    if benign not in line:
                        print(line.rstrip("\n"), file=sys.stderr)
        finally:
            if process.stderr is not None:
                process.stderr.close()
            code = process.wait()
        return code

    def run_tool(self, command: Command) -> None:
        """Run `command`; a non-zero exit raises ExternalToolFailure (CE4002)."""
        code = self.execute(command)
        if code != 0:
            raise ExternalToolFailure(command.tool, code)


class ToolchainExecutor(ProcessExecutor):
    """Resolves host LLVM tools and target toolchain tools to absolute paths."""

    def __init__(self, llvm_bin: str, target_toolchain: str,
                 log: Optional[Callable[[str], None]] = None,
                 stderr_filters: Optional[Mapping[str, str]] = None) -> None:
        super().__init__(log, stderr_filters)
        self.llvm_bin = llvm_bin
        self.target_toolchain = target_toolchain

    def host_llvm_tool(self, tool: str, args: list[str]) -> None:
        self.run_tool(Command(f"{self.llvm_bin}/{tool}", tuple(args)))

    def target_tool(self, tool: str, *args: str) -> None:
        self.run_tool(Command(f"{self.target_toolchain}/bin/{tool}", tuple(args)))
