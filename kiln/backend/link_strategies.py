"""How a platform carries out its link command."""
from __future__ import annotations

import shutil
from pathlib import Path

from kiln.backend.command import Command
from kiln.backend.executor import ProcessExecutor


class LinkStrategy:
    """Executes a fully assembled link command."""

    def run(self, command: Command, executor: ProcessExecutor) -> None:
        raise NotImplementedError


class RunLinker(LinkStrategy):
    """Run the linker command as is."""

    def run(self, command: Command, executor: ProcessExecutor) -> None:
        executor.run_tool(command)


class RunLinkerThenDsymutil(LinkStrategy):
    """Run the linker, then extract debug symbols from the linked artifact.

    The extraction only starts after the linker succeeded.
    """

    def __init__(self, dsymutil_command: Command) -> None:
        self.dsymutil_command = dsymutil_command

    def run(self, command: Command, executor: ProcessExecutor) -> None:
        executor.run_tool(command)
        executor.run_tool(self.dsymutil_command)


class CopyObjectAndLinkScripts(LinkStrategy):
    """WebAssembly has no native link step.

    The single object file is copied to the output path, and the command's
    `.js` libraries are concatenated into `<executable>.js` behind a stub.
    """

    LINKER_STUB = "var konan = { libraries: [] };\n"

    def __init__(self, object_files: list[str], executable: str) -> None:
        self.object_files = object_files
        self.executable = executable

    def run(self, command: Command, executor: ProcessExecutor) -> None:
        (src,) = self.object_files
        executor.log(f"cp {src} {self.executable}")
        shutil.copyfile(src, self.executable)
        self.java_script_link([lib for lib in command.libs if lib.endswith(".js")])

    def java_script_link(self, js_files: list[str]) -> str:
        linked = Path(f"{self.executable}.js")
        with open(linked, "wb") as out:
            out.write(self.LINKER_STUB.encode("utf-8"))
            for js in js_files:
                out.write(Path(js).read_bytes())
        return linked.name
