# src/pgsample/core/dag/__init__.py
"""Foreign-key dependency graph."""

from pgsample.core.dag.graph import DependencyGraph

__all__ = ["DependencyGraph"]
