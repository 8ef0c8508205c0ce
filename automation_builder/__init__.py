"""Automation workflow builder for multi-step, branching email sequences."""

__version__ = "0.1.0"
