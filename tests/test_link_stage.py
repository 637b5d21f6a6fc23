from __future__ import annotations

import os
from pathlib import Path

import pytest

from kiln.backend.platform_detect import Target
from kiln.compiler.config import CompilerOutputKind, LinkedLibrary
from kiln.compiler.link_stage import LinkStage
from kiln.internals.errors import ConfigurationError


def link_stage(context):
    return LinkStage(context.setup)


def test_wl_flags_split_for_raw_linker(make_context):
    stage = link_stage(make_context(target=Target.LINUX_X64))
    assert stage.as_linker_args(["-Wl,--gc-sections,-z,now", "-lfoo"]) == \
        ["--gc-sections", "-z", "now", "-lfoo"]


def test_wl_flags_kept_for_compiler_driver(make_context):
    stage = link_stage(make_context(target=Target.ANDROID_ARM64))
    assert stage.as_linker_args(["-Wl,--gc-sections", "-lfoo"]) == ["-Wl,--gc-sections", "-lfoo"]


@pytest.mark.parametrize("produce, nomain, expected", [
    (CompilerOutputKind.PROGRAM, False, ["--defsym", "main=Konan_main"]),
    (CompilerOutputKind.PROGRAM, True, []),
    (CompilerOutputKind.DYNAMIC, False, []),
])
def test_entry_point_selector(make_context, produce, nomain, expected):
    stage = link_stage(make_context(produce=produce, nomain=nomain))
    assert stage.entry_point_selector == expected


def test_successful_link_returns_output(make_context, tmp_path):
    context = make_context()
    out = link_stage(context).link(["/obj/a.o"], [], [], [])
    assert out == str(tmp_path / "out.kexe")
    assert context.setup.executor.tools == ["ld.gold"]
    assert not context.reporter.items


def test_link_failure_reports_one_error(make_context):
    context = make_context(fail_on="ld.gold")
    assert link_stage(context).link(["/obj/a.o"], [], [], []) is None
    assert [(d.kind, d.code) for d in context.reporter.items] == [("error", "CE4003")]
    assert context.reporter.items[0].message == "linker invocation reported errors"


def test_appended_flags_order(make_context):
    context = make_context(linker_args=["-Wl,-z,now"], debug=True)
    link_stage(context).link(["/obj/a.o"], ["/lib/rt.a"], ["/lib/user.a"], ["-lcurl"])

    (cmd,) = context.setup.executor.commands
    argv = cmd.argv
    tail = argv[argv.index("/deps/sysroot/usr/lib64/crtn.o") + 1:]
    assert tail == ["/deps/libffi/lib/libffi.a", "-z", "now", "--defsym", "main=Konan_main", "-lcurl"]
    # default libraries come before user libraries
    assert argv.index("/lib/rt.a") < argv.index("/lib/user.a")
    assert argv[argv.index("/lib/rt.a") - 1] == "--whole-archive"
    assert cmd.libs == ("/lib/rt.a", "/lib/user.a")


def test_rejected_static_library_warns(make_context):
    context = make_context()
    link_stage(context).link(["/obj/a.o"], [], ["/lib/foo.lib", "/lib/bar.a", "/lib/x.js"], [])

    argv = context.setup.executor.commands[0].argv
    assert "/lib/foo.lib" not in argv
    assert "/lib/bar.a" in argv
    assert [(d.kind, d.code) for d in context.reporter.items] == [("warning", "CW4009")]
    assert "/lib/foo.lib" in context.reporter.items[0].message


def test_macos_debug_link_then_dsymutil(make_context, tmp_path):
    context = make_context(target=Target.MACOS_X64, debug=True)
    out = link_stage(context).link(["/obj/a.o"], [], [], [])

    executor = context.setup.executor
    assert executor.tools == ["ld", "llvm-dsymutil"]
    assert executor.commands[1].argv == ["/llvm/bin/llvm-dsymutil", out]
    # the entry point alias goes through verbatim
    argv = executor.commands[0].argv
    alias = argv.index("-alias")
    assert argv[alias:alias + 3] == ["-alias", "_Konan_main", "_main"]


def test_macos_dsymutil_skipped_when_link_fails(make_context):
    context = make_context(target=Target.MACOS_X64, debug=True, fail_on="ld")
    assert link_stage(context).link(["/obj/a.o"], [], [], []) is None
    assert context.setup.executor.tools == ["ld"]
    assert len(context.reporter.errors) == 1


def test_macos_framework_layout(make_context, tmp_path):
    context = make_context(target=Target.MACOS_X64, produce=CompilerOutputKind.FRAMEWORK,
                           output_name=str(tmp_path / "Kit"))
    out = link_stage(context).link(["/obj/a.o"], [], [], [])

    assert out == os.path.abspath(tmp_path / "Kit.framework" / "Versions" / "A" / "Kit")
    assert (tmp_path / "Kit.framework" / "Versions" / "A").is_dir()
    argv = context.setup.executor.commands[0].argv
    assert argv[argv.index("-o") + 1] == out
    i = argv.index("-install_name")
    assert argv[i + 1] == "@rpath/Kit.framework/Versions/A/Kit"
    # frameworks are dynamic: no entry point alias
    assert "-alias" not in argv
    assert "-dylib" in argv


def test_ios_framework_is_flat(make_context, tmp_path):
    context = make_context(target=Target.IOS_ARM64, produce=CompilerOutputKind.FRAMEWORK,
                           output_name=str(tmp_path / "Kit"))
    out = link_stage(context).link(["/obj/a.o"], [], [], [])

    assert out == os.path.abspath(tmp_path / "Kit.framework" / "Kit")
    assert (tmp_path / "Kit.framework").is_dir()
    argv = context.setup.executor.commands[0].argv
    assert argv[argv.index("-install_name") + 1] == "@rpath/Kit.framework/Kit"


def test_framework_needs_apple_target(make_context, tmp_path):
    context = make_context(produce=CompilerOutputKind.FRAMEWORK)
    with pytest.raises(ConfigurationError) as exc:
        link_stage(context).link(["/obj/a.o"], [], [], [])
    assert exc.value.code == "CE4005"
    assert context.setup.executor.commands == []


def test_link_stage_partitions_libraries(make_context):
    libraries = [
        LinkedLibrary("user", ["/lib/user.a"], ["-luser"]),
        LinkedLibrary("stdlib", ["/lib/stdlib.a"], ["-lstd"], is_default=True),
    ]
    context = make_context(libraries_to_link=libraries)
    link_stage(context).link_stage(["/obj/a.o"])

    (cmd,) = context.setup.executor.commands
    argv = cmd.argv
    assert argv.index("/lib/stdlib.a") < argv.index("/lib/user.a")
    assert argv[-2:] == ["-luser", "-lstd"]


def test_wasm_link_copies_object_and_joins_scripts(make_context, tmp_path):
    obj = tmp_path / "combined.wasm"
    obj.write_bytes(b"\0asm")
    js = tmp_path / "lib.js"
    js.write_text("konan.libraries.push(1);\n")

    context = make_context(target=Target.WASM32)
    out = link_stage(context).link([str(obj)], [], [str(js), str(tmp_path / "x.a")], [])

    assert out == str(tmp_path / "out.wasm")
    assert Path(out).read_bytes() == b"\0asm"
    script = Path(out + ".js").read_text()
    assert script == "var konan = { libraries: [] };\nkonan.libraries.push(1);\n"
    assert context.setup.executor.commands == []
