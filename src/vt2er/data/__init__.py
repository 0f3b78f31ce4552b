"""Bundled Escape Room libraries and translation catalogs."""
