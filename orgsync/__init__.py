"""orgsync: reconcile spreadsheet imports of departments and positions with an organization store."""

__version__ = "0.1.0"
