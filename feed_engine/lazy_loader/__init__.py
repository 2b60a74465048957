"""Viewport-driven lazy loading of ranked feeds."""

from .lazy_loader import LOADER_CONFIGS, LazyLoader, LoaderConfig

__all__ = ["LOADER_CONFIGS", "LazyLoader", "LoaderConfig"]
