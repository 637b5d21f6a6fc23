"""External tool invocations.

A `Command` is immutable: the tool path, its ordered arguments and the
auxiliary libraries the invocation carries. Argument order is exactly the
order of assembly, since linkers are order-sensitive.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class Command:
    tool: str
    args: tuple[str, ...] = ()
    libs: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.tool, *self.args]

    def with_flags(self, flags: Iterable[str]) -> Command:
        """Return a new command with `flags` appended."""
        return Command(self.tool, self.args + tuple(flags), self.libs)

    def with_libraries(self, libs: Iterable[str]) -> Command:
        return Command(self.tool, self.args, self.libs + tuple(libs))

    def __str__(self) -> str:
        return " ".join(self.argv)


class CommandBuilder:
    """Assembles a Command one flag at a time."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        self._args: list[str] = []
        self._libs: list[str] = []

    def append_flag(self, flag: str) -> CommandBuilder:
        self._args.append(flag)
        return self

    def append_flags(self, flags: Iterable[str]) -> CommandBuilder:
        self._args.extend(flags)
        return self

    def external_libraries(self, deps: Iterable[str]) -> CommandBuilder:
        self._libs.extend(deps)
        return self

    def build(self) -> Command:
        return Command(self.tool, tuple(self._args), tuple(self._libs))
