"""Leviathan CLI — Typer-based command-line interface.

Provides the ``leviathan`` command with subcommands for running a test
session against a Leviathan host and for inspecting artifact hashes.

All output uses Rich for formatted terminal display.  Progress and logs go
to stderr; stdout carries the live session.
"""
