"""
Configuration for PageSpeed Watcher.
"""
