"""Command line interface (``python -m tablesync.cli``)."""
