"""CLI entry point and argument parsing."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from kiln.internals.version import print_version


def print_library_info(library_path: Path) -> int:
    """Print the manifest of a .klib file or unpacked library directory.

    Returns:
        0 on success, 2 on error.
    """
    from kiln.backend.library_writer import read_manifest
    from kiln.internals.errors import KilnError

    if not library_path.exists():
        print(f"Error: file not found: {library_path}", file=sys.stderr)
        return 2

    if not library_path.is_dir() and library_path.suffix != ".klib":
        print(f"Error: expected .klib file, got: {library_path}", file=sys.stderr)
        return 2

    try:
        manifest = read_manifest(library_path)
    except (KilnError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(f"Library: {manifest['unique_name']}")
    print(f"Target: {manifest['target']}")
    print(f"Compiler: {manifest['compiler_version']}")
    print(f"ABI: {manifest['abi_version']}")
    print()

    natives = manifest.get("native_targets", [])
    if natives:
        print(f"Native bitcode ({len(natives)}):")
        for name in natives:
            print(f"  {name}")
        print()

    deps = manifest.get("depends", [])
    if deps:
        print(f"Dependencies ({len(deps)}):")
        for dep in deps:
            print(f"  <{dep}>")
        print()

    props = manifest.get("properties", {})
    if props:
        print("Properties:")
        for key, value in props.items():
            print(f"  {key} = {value}")

    return 0


def _parse_library(value: str, is_default: bool):
    """`name=path[,path]` -> LinkedLibrary."""
    from kiln.compiler.config import LinkedLibrary

    name, sep, paths = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=PATH[,PATH], got '{value}'")
    return LinkedLibrary(name, [p for p in paths.split(",") if p], [], is_default)


def _apply_linker_options(libraries, options: list[str]) -> None:
    by_name = {lib.name: lib for lib in libraries}
    for value in options:
        name, sep, flag = value.partition("=")
        if not sep or name not in by_name:
            raise argparse.ArgumentTypeError(f"no library named '{name}' for linker option '{value}'")
        by_name[name].linker_opts.append(flag)


def _load_module(src_path: Path):
    import llvmlite.binding as llvm

    data = src_path.read_bytes()
    if src_path.suffix == ".ll":
        return llvm.parse_assembly(data.decode("utf-8"))
    return llvm.parse_bitcode(data)


def _load_properties(args):
    from kiln.backend.properties import load_properties

    return load_properties(Path(args.properties) if args.properties else None,
                           only_default_profiles=args.only_default_profiles,
                           runtime_file=args.runtime)


def show_version(args) -> int:
    """Print the banner and, when the properties load, the resolved toolchain."""
    from kiln.backend.platform_detect import host_target, resolve_target
    from kiln.internals.errors import KilnError

    try:
        properties = _load_properties(args)
        target = resolve_target(args.target) if args.target else host_target()
    except KilnError as e:
        print_version(problem=e.message)
        return 0
    print_version(properties, target)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="kilnc", description="Native artifact backend for LLVM bitcode")

    ap.add_argument("source", nargs="?", help="Program bitcode (.bc) or LLVM IR (.ll)")
    ap.add_argument("--version", action="store_true", help="Show version and exit")
    ap.add_argument("-o", "--out", metavar="OUT",
                    help="Output name (default: source filename without extension)")
    ap.add_argument("--target", help="Target name (default: host)")
    ap.add_argument("--produce", default="program",
                    choices=["program", "dynamic", "framework", "library", "bitcode"],
                    help="Kind of artifact to produce")
    ap.add_argument("--opt", action="store_true", help="Optimize")
    ap.add_argument("-g", "--debug", action="store_true", help="Emit debug information")
    ap.add_argument("--nomain", action="store_true", help="Do not alias the entry point")
    ap.add_argument("--nopack", action="store_true", help="Leave the library as a directory")
    ap.add_argument("--linker-option", action="append", default=[], metavar="FLAG",
                    help="Pass FLAG to the linker (repeatable). Flags starting with '-' "
                         "must use the joined form: --linker-option=-Wl,-z,now")
    ap.add_argument("--native-library", action="append", default=[], metavar="BC",
                    help="Native bitcode library to link or embed (repeatable)")
    ap.add_argument("--default-native-library", action="append", default=[], metavar="BC",
                    help="Runtime bitcode linked into every program (repeatable; "
                         "default: the distribution runtime and default natives)")
    ap.add_argument("--runtime", metavar="BC", help="Use BC instead of the distribution runtime")
    ap.add_argument("--include-binary", action="append", default=[], metavar="FILE",
                    help="Binary to embed in the library (repeatable)")
    ap.add_argument("--library", action="append", default=[], metavar="NAME=PATH[,PATH]",
                    help="Library whose binaries are linked (repeatable)")
    ap.add_argument("--default-library", action="append", default=[], metavar="NAME=PATH[,PATH]",
                    help="Default library whose binaries are linked first (repeatable)")
    ap.add_argument("--library-linker-option", action="append", default=[], metavar="NAME=FLAG",
                    help="Linker flag contributed by a linked library (repeatable)")
    ap.add_argument("--depends", action="append", default=[], metavar="NAME",
                    help="Library recorded as a dependency in the manifest (repeatable)")
    ap.add_argument("--manifest", metavar="FILE", help="TOML manifest merged into the library")
    ap.add_argument("--link-data", metavar="FILE", help="Serialized link data for the library")
    ap.add_argument("--c-adapter", metavar="CPP", help="C adapter source for dynamic libraries")
    ap.add_argument("--properties", metavar="FILE",
                    help="Properties file (default: $KILN_PROPERTIES or ~/.kiln/kiln.toml)")
    ap.add_argument("--only-default-profiles", action="store_true",
                    help="Resolve dependencies with the 'default' profile only")
    ap.add_argument("--module-name", default="main", help="Library module name")
    ap.add_argument("--verbose", action="store_true", help="Print every tool invocation")
    ap.add_argument("--lib-info", metavar="FILE", help="Display the manifest of a .klib library")
    return ap


def main(argv: list[str] | None = None) -> int:
    """Main compiler entry point."""
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.version:
        return show_version(args)

    if args.lib_info:
        return print_library_info(Path(args.lib_info))

    if not args.source:
        print("error: source file required", file=sys.stderr)
        return 2

    from kiln.backend.platform_detect import host_target, resolve_target
    from kiln.compiler.config import CompilerConfig, CompilerOutputKind
    from kiln.compiler.context import Context
    from kiln.compiler.producers import produce
    from kiln.internals.errors import KilnError
    from kiln.internals.report import Reporter

    reporter = Reporter()
    src_path = Path(args.source).resolve()

    try:
        libraries = [_parse_library(s, True) for s in args.default_library]
        libraries += [_parse_library(s, False) for s in args.library]
        _apply_linker_options(libraries, args.library_linker_option)
    except argparse.ArgumentTypeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        module = _load_module(src_path)
    except OSError as e:
        print(f"error: cannot read {src_path}: {e.strerror or e}", file=sys.stderr)
        return 2
    except RuntimeError as e:
        print(f"error: cannot parse {src_path}: {e}", file=sys.stderr)
        return 2

    link_data = b""
    if args.link_data:
        try:
            link_data = Path(args.link_data).read_bytes()
        except OSError as e:
            print(f"error: cannot read {args.link_data}: {e.strerror or e}", file=sys.stderr)
            return 2

    try:
        properties = _load_properties(args)
        target = resolve_target(args.target) if args.target else host_target()
        if args.verbose:
            print_version(properties, target)
        config = CompilerConfig(
            target=target,
            produce=CompilerOutputKind.parse(args.produce),
            output_name=args.out or str(src_path.with_suffix("")),
            module_name=args.module_name,
            optimize=args.opt,
            debug=args.debug,
            nomain=args.nomain,
            nopack=args.nopack,
            verbose=args.verbose,
            linker_args=args.linker_option,
            manifest_file=args.manifest,
            native_libraries=args.native_library,
            default_native_libraries=(args.default_native_library
                                      or properties.distribution.default_native_libraries(target)),
            include_binaries=args.include_binary,
            libraries_to_link=libraries,
            c_adapter_source=args.c_adapter,
        )
        context = Context(config, properties, reporter, module,
                          serialized_link_data=link_data,
                          libraries_for_manifest=args.depends)
        artifact = produce(context)
    except KilnError as e:
        reporter.error(e.code, e.message, "backend")
        artifact = None

    reporter.print()
    if reporter.has_errors:
        return 2
    if artifact is not None and args.verbose:
        print(f"Wrote {artifact}")
    return 1 if reporter.has_warnings else 0


if __name__ == "__main__":
    raise SystemExit(main())
