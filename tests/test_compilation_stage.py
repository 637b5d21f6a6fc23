from __future__ import annotations

import os

import pytest

from kiln.backend.platform_detect import Target
from kiln.compiler.compilation_stage import CompilationStage, compile_static_library
from kiln.internals.errors import ExternalToolFailure


def stage(make_context, **config):
    context = make_context(**config)
    return CompilationStage(context.setup), context.setup.executor


@pytest.mark.parametrize("optimize, debug, level, flags", [
    (True, False, "-O3", ["-O3", "-function-sections"]),
    (True, True, "-O3", ["-O3", "-function-sections"]),
    (False, True, "-O0", ["-O0", "-g"]),
    (False, False, "-O1", ["-O1"]),
])
def test_optimization_policy(make_context, optimize, debug, level, flags):
    compilation, executor = stage(make_context, optimize=optimize, debug=debug)
    compilation.produce_object_files(["/in/program.bc"])

    (opt,) = executor.find("opt")
    (llc,) = executor.find("llc")
    assert opt.args[:2] == ("/in/program.bc", level)
    assert list(llc.args[1:1 + len(flags)]) == flags
    assert llc.args[1 + len(flags)] == "-filetype=obj"


def test_single_module_skips_bitcode_link(make_context):
    compilation, executor = stage(make_context, debug=True)
    objects = compilation.produce_object_files(["/in/program.bc"])

    assert executor.tools == ["opt", "llc"]
    assert executor.commands[0].tool == "/llvm/bin/opt"
    optimized = executor.commands[0].args[-1]
    assert executor.commands[1].args[0] == optimized
    assert objects == [executor.commands[1].args[-1]]
    assert os.path.basename(objects[0]).startswith("compiled")


def test_multiple_modules_are_linked_first(make_context):
    compilation, executor = stage(make_context, optimize=True)
    compilation.produce_object_files(["/in/a.bc", "/in/b.bc"])

    assert executor.tools == ["llvm-link", "opt", "llc"]
    link, opt, llc = executor.commands
    assert link.args[:3] == ("/in/a.bc", "/in/b.bc", "-o")
    assert opt.args[0] == link.args[-1]
    assert opt.args[1] == "-O3"
    assert "-function-sections" in llc.args


def test_static_library_archives_every_module(make_context):
    context = make_context()
    executor = context.setup.executor
    archive = compile_static_library(context, ["/in/a.bc", "/in/b.bc"], "main.a")

    assert executor.tools == ["opt", "llc", "opt", "llc", "llvm-ar"]
    (ar,) = executor.find("llvm-ar")
    compiled = [c.args[-1] for c in executor.find("llc")]
    assert ar.args == ("rcs", archive, *compiled)
    assert archive == context.temp_files.named("main.a")


def test_static_library_without_name_gets_temporary_archive(make_context):
    compilation, executor = stage(make_context)
    archive = compilation.produce_static_library(["/in/a.bc"])
    assert archive.endswith(".a")
    assert os.path.basename(archive).startswith("lib")


def test_wasm_pipeline(make_context):
    compilation, executor = stage(make_context, target=Target.WASM32)
    objects = compilation.produce_object_files(["/in/a.bc"])

    assert [c.tool for c in executor.commands] == [
        "/llvm/bin/llvm-link", "/wasm/bin/llc", "/wasm/bin/s2wasm", "/wasm/bin/wasm-as"]
    link, llc, s2wasm, wasm_as = executor.commands
    assert llc.args == (link.args[-1], "-o", llc.args[-1])
    assert llc.args[-1].endswith(".s")
    assert s2wasm.args[:3] == (llc.args[-1], "-o", s2wasm.args[2])
    assert s2wasm.args[3:] == ("--allocate-stack", "1048576")
    assert wasm_as.args[0] == s2wasm.args[2]
    assert wasm_as.args[3:5] == ("-g", "-s")
    assert wasm_as.args[5].endswith(".smap")
    assert objects == [wasm_as.args[2]]
    assert objects[0].endswith(".wasm")


def test_tool_failure_propagates(make_context):
    compilation, executor = stage(make_context, fail_on="opt")
    with pytest.raises(ExternalToolFailure) as exc:
        compilation.produce_object_files(["/in/a.bc"])
    assert exc.value.tool == "/llvm/bin/opt"
    assert executor.tools == ["opt"]
