"""
Client for PageSpeed Watcher.

Provides quota-governed access to the PageSpeed Insights API.
"""

from .psi_client import PSIClient, PSIRunResult, PageCheck, create_client

__all__ = ["PSIClient", "PSIRunResult", "PageCheck", "create_client"]
