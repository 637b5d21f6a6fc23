"""Compilation stages, link stage and output producers."""
