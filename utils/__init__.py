"""
Shared utilities: configuration, logging, SQLite access, feed wire schemas,
backoff and timestamp helpers.
"""
