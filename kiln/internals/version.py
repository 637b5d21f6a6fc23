"""Version banner and the toolchain summary printed by `kilnc --version`."""
from __future__ import annotations

import sys

from kiln import __version__ as app_ver, __dev__ as is_dev


def llvm_version() -> str:
    """Version of the LLVM library llvmlite is built against."""
    try:
        from llvmlite import binding as llvm
    except (ImportError, OSError):
        return "unknown"
    return ".".join(map(str, llvm.llvm_version_info)) or "unknown"


def banner() -> str:
    dev_marker = " (dev)" if is_dev else ""
    return f"kilnc {app_ver}{dev_marker} (LLVM {llvm_version()})"


def toolchain_summary(properties, target) -> list[str]:
    """Describe the tools and files a build for `target` will use.

    Overlay files are listed in the order they were merged.
    """
    dist = properties.distribution
    lines = [
        f"target:      {target.visible_name} ({target.triple})",
        f"llvm:        {dist.llvm_bin}",
        f"properties:  {properties.sources[0]}",
    ]
    lines += [f"  overlay:   {source}" for source in properties.sources[1:]]
    lines.append(f"runtime:     {dist.runtime(target)}")
    lines.append(f"natives:     {dist.default_natives(target)}")
    return lines


def print_version(properties=None, target=None, problem: str | None = None) -> None:
    print(banner())
    if problem:
        print(f"properties:  unavailable ({problem})", file=sys.stderr)
    elif properties is not None and target is not None:
        for line in toolchain_summary(properties, target):
            print(line)
