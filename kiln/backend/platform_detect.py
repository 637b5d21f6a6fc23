"""
Target identification and target triple parsing for the Kiln backend.

Kiln supports a closed set of targets. Each belongs to exactly one family,
and the family decides which platform descriptor drives the link.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from enum import Enum

from llvmlite import binding as llvm

from kiln.internals.errors import ConfigurationError


class Family(str, Enum):
    LINUX = "linux"
    APPLE = "apple"
    ANDROID = "android"
    MINGW = "mingw"
    WASM = "wasm"


class Target(str, Enum):
    """Supported compilation targets, by their visible name."""
    LINUX_X64 = "linux_x64"
    RASPBERRYPI = "raspberrypi"
    LINUX_MIPS32 = "linux_mips32"
    LINUX_MIPSEL32 = "linux_mipsel32"
    MACOS_X64 = "macos_x64"
    IOS_ARM64 = "ios_arm64"
    IOS_X64 = "ios_x64"
    ANDROID_ARM32 = "android_arm32"
    ANDROID_ARM64 = "android_arm64"
    MINGW_X64 = "mingw_x64"
    WASM32 = "wasm32"

    @property
    def visible_name(self) -> str:
        return self.value

    @property
    def family(self) -> Family:
        return _FAMILIES[self]

    @property
    def triple(self) -> str:
        return _TRIPLES[self]

    @property
    def is_mips(self) -> bool:
        return self in (Target.LINUX_MIPS32, Target.LINUX_MIPSEL32)


_FAMILIES = {
    Target.LINUX_X64: Family.LINUX,
    Target.RASPBERRYPI: Family.LINUX,
    Target.LINUX_MIPS32: Family.LINUX,
    Target.LINUX_MIPSEL32: Family.LINUX,
    Target.MACOS_X64: Family.APPLE,
    Target.IOS_ARM64: Family.APPLE,
    Target.IOS_X64: Family.APPLE,
    Target.ANDROID_ARM32: Family.ANDROID,
    Target.ANDROID_ARM64: Family.ANDROID,
    Target.MINGW_X64: Family.MINGW,
    Target.WASM32: Family.WASM,
}

_TRIPLES = {
    Target.LINUX_X64: "x86_64-unknown-linux-gnu",
    Target.RASPBERRYPI: "armv6-unknown-linux-gnueabihf",
    Target.LINUX_MIPS32: "mips-unknown-linux-gnu",
    Target.LINUX_MIPSEL32: "mipsel-unknown-linux-gnu",
    Target.MACOS_X64: "x86_64-apple-macosx",
    Target.IOS_ARM64: "arm64-apple-ios",
    Target.IOS_X64: "x86_64-apple-ios-simulator",
    Target.ANDROID_ARM32: "arm-unknown-linux-androideabi",
    Target.ANDROID_ARM64: "aarch64-unknown-linux-android",
    Target.MINGW_X64: "x86_64-w64-mingw32",
    Target.WASM32: "wasm32-unknown-unknown",
}


@dataclass
class TargetPlatform:
    """Represents the components of an LLVM target triple."""
    arch: str      # x86_64, arm64, mipsel, wasm32, etc.
    vendor: str    # apple, pc, w64, unknown, etc.
    os: str        # darwin, macosx, ios, linux, mingw32, etc.
    abi: str       # (empty), gnu, android, simulator, etc.

    @property
    def triple(self) -> str:
        """Reconstruct the target triple string."""
        parts = [self.arch, self.vendor, self.os]
        if self.abi:
            parts.append(self.abi)
        return '-'.join(parts)


def parse_triple(triple: str) -> TargetPlatform:
    """
    Parse an LLVM target triple into components.

    Examples:
        x86_64-apple-darwin17.7.0 -> TargetPlatform(x86_64, apple, darwin, '')
        x86_64-pc-linux-gnu -> TargetPlatform(x86_64, pc, linux, gnu)
        aarch64-unknown-linux-android21 -> TargetPlatform(aarch64, unknown, linux, android21)
    """
    parts = triple.split('-')

    # Drop OS version numbers (darwin17.7.0 -> darwin, macosx10.11 -> macosx)
    os_part = parts[2] if len(parts) > 2 else 'unknown'
    os_part = re.sub(r'[0-9.]+$', '', os_part) or os_part

    return TargetPlatform(
        arch=parts[0] if len(parts) > 0 else 'unknown',
        vendor=parts[1] if len(parts) > 1 else 'unknown',
        os=os_part,
        abi=parts[3] if len(parts) > 3 else '',
    )


def target_for_platform(platform: TargetPlatform) -> Target | None:
    """Map parsed triple components onto a supported target, if any."""
    arch, os_name, abi = platform.arch, platform.os, platform.abi

    if arch == "wasm32":
        return Target.WASM32
    if os_name in ("darwin", "macosx", "macos"):
        return Target.MACOS_X64 if arch == "x86_64" else None
    if os_name == "ios":
        if arch in ("arm64", "aarch64"):
            return Target.IOS_ARM64
        return Target.IOS_X64 if arch == "x86_64" else None
    if os_name == "linux" and abi.startswith("android"):
        if arch in ("aarch64", "arm64"):
            return Target.ANDROID_ARM64
        return Target.ANDROID_ARM32 if arch.startswith("arm") else None
    if os_name == "linux":
        if arch == "x86_64":
            return Target.LINUX_X64
        if arch == "mips":
            return Target.LINUX_MIPS32
        if arch == "mipsel":
            return Target.LINUX_MIPSEL32
        return Target.RASPBERRYPI if arch.startswith("arm") else None
    if os_name in ("mingw", "windows") and arch == "x86_64":
        return Target.MINGW_X64
    return None


def resolve_target(name: str) -> Target:
    """Resolve a visible target name or an LLVM triple.

    Raises:
        ConfigurationError: CE4000 if the target is not supported.
    """
    try:
        return Target(name.lower())
    except ValueError:
        pass
    target = target_for_platform(parse_triple(name)) if '-' in name else None
    if target is None:
        raise ConfigurationError("CE4000", target=name)
    return target


def host_target() -> Target:
    """Get the target matching the host's default triple."""
    return resolve_target(llvm.get_default_triple())
