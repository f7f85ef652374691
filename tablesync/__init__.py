"""tablesync: resumable spreadsheet roll-up and upsert reconciliation."""

__version__ = "0.1.0"
