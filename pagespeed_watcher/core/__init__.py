"""
Core modules for PageSpeed Watcher.

This package contains the rate windows, admission control, error taxonomy,
cost estimation and metric extraction.
"""
