"""Digital shoebox: receipt duplicate detection and expense claims."""

__version__ = "0.1.0"
