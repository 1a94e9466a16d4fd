"""
Storage layer for PageSpeed Watcher.

SQLite-backed usage ledger and rate-window counter stores.
"""
