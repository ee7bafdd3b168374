"""Bundled migration units, applied in file-name order."""
