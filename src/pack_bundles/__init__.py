"""Pack a source tree into size-bounded text bundles with a JSON source map."""

__version__ = "0.1.0"
