"""codeskel: incremental code indexing with bottom-up code skeletons."""

__version__ = "0.1.0"
