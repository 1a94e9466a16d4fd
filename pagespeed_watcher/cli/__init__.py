"""
Command-line interface for PageSpeed Watcher.
"""
