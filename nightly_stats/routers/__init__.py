"""
API routers package.
"""
from nightly_stats.routers import results, reports, jenkins, system

__all__ = ["results", "reports", "jenkins", "system"]
