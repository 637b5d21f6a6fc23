from __future__ import annotations

import sys

import pytest

from kiln.backend.command import Command, CommandBuilder
from kiln.backend.executor import EXIT_NOT_STARTED, ProcessExecutor, ToolchainExecutor
from kiln.internals.errors import ExternalToolFailure

BENIGN = "warning: could not find object file symbol for symbol _main"


def python(code: str) -> Command:
    return Command(sys.executable, ("-c", code))


def test_builder_preserves_append_order():
    cmd = (CommandBuilder("/bin/ld")
           .append_flag("-o")
           .append_flags(["out", "a.o"])
           .append_flag("-lc")
           .external_libraries(["x.js"])
           .build())
    assert cmd.argv == ["/bin/ld", "-o", "out", "a.o", "-lc"]
    assert cmd.libs == ("x.js",)


def test_command_is_immutable_and_chains():
    base = Command("/bin/ld", ("-o", "out"))
    extended = base.with_flags(["-lc"]).with_libraries(["a.js"])
    assert base.args == ("-o", "out")
    assert extended.args == ("-o", "out", "-lc")
    assert extended.libs == ("a.js",)
    assert str(extended) == "/bin/ld -o out -lc"


def test_successful_tool():
    ProcessExecutor().run_tool(python("pass"))


def test_failing_tool_carries_name_and_exit_code():
    cmd = python("import sys; sys.exit(3)")
    with pytest.raises(ExternalToolFailure) as exc:
        ProcessExecutor().run_tool(cmd)
    assert exc.value.tool == sys.executable
    assert exc.value.exit_code == 3
    assert exc.value.message == f"the {sys.executable} command returned non-zero exit code: 3"


def test_missing_tool_is_reported_as_failure(tmp_path, capsys):
    missing = str(tmp_path / "no-such-tool")
    assert ProcessExecutor().execute(Command(missing)) == EXIT_NOT_STARTED
    assert "cannot run" in capsys.readouterr().err
    with pytest.raises(ExternalToolFailure) as exc:
        ProcessExecutor().run_tool(Command(missing))
    assert exc.value.exit_code == EXIT_NOT_STARTED


def test_executor_logs_command_line():
    lines = []
    ProcessExecutor(log=lines.append).run_tool(python("pass"))
    assert lines == ["", f"{sys.executable} -c pass"]


def test_filtered_tool_drops_only_benign_stderr_lines(capsys):
    code = (
        "import sys\n"
        f"sys.stderr.write('{BENIGN}\\n')\n"
        "sys.stderr.write('real problem\\n')\n"
        f"sys.stderr.write('prefix {BENIGN} suffix\\n')\n"
    )
    executor = ProcessExecutor(stderr_filters={sys.executable: BENIGN})
    executor.run_tool(python(code))

    err = capsys.readouterr().err
    assert "real problem" in err
    assert BENIGN not in err


def test_filtered_tool_failure_still_raises():
    executor = ProcessExecutor(stderr_filters={sys.executable: BENIGN})
    with pytest.raises(ExternalToolFailure):
        executor.run_tool(python("import sys; sys.exit(1)"))


def test_filtered_tool_survives_undecodable_stderr(capsys):
    code = (
        "import sys\n"
        "sys.stderr.buffer.write(b'bad \\xff byte\\n')\n"
        f"sys.stderr.buffer.write(b'{BENIGN}\\n')\n"
        "sys.exit(4)\n"
    )
    executor = ProcessExecutor(stderr_filters={sys.executable: BENIGN})
    assert executor.execute(python(code)) == 4

    err = capsys.readouterr().err
    assert "bad � byte" in err
    assert BENIGN not in err



class _Recorder(ToolchainExecutor):
    def __init__(self):
        super().__init__("/llvm/bin", "/tc")
        self.commands = []

    def run_tool(self, command):
        self.commands.append(command)


def test_toolchain_executor_resolves_tool_paths():
    executor = _Recorder()
    executor.host_llvm_tool("opt", ["in.bc", "-O3"])
    executor.target_tool("wasm-as", "in.wast", "-o", "out.wasm")
    assert [c.argv for c in executor.commands] == [
        ["/llvm/bin/opt", "in.bc", "-O3"],
        ["/tc/bin/wasm-as", "in.wast", "-o", "out.wasm"],
    ]
