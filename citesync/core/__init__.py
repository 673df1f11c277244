"""Data models, change log and style registry."""
