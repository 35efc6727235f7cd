"""Instruction-driven automation engine for an advisor copilot."""

__version__ = "0.1.0"
