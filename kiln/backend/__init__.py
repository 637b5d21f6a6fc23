"""Target platforms, toolchain commands and process execution."""
