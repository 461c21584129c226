# core/proxy/__init__.py
"""
Proxy pipeline package.

Router → adapters (bare / epoxy / rewriting) → content rewriter,
with a versioned cache store and lifecycle manager.
"""

__all__ = []
