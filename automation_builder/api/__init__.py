"""API route modules."""
from automation_builder.api import editor

__all__ = ["editor"]
