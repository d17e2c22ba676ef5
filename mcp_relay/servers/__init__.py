"""Bundled stdio tool servers."""
