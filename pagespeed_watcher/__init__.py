"""
PageSpeed Watcher.

Quota-governed PageSpeed Insights monitoring with daily usage accounting.
"""

__version__ = "0.1.0"
