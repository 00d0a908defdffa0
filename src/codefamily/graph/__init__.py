"""Import resolution into in-repository dependency edges."""

from .resolver import DependencyResolver, ResolvedImport, language_for_path

__all__ = ["DependencyResolver", "ResolvedImport", "language_for_path"]
