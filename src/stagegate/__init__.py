"""Staged task pipeline with checks, auto-fix and quality gates."""

__version__ = "0.1.0"
