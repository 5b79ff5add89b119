"""
Dash web view of the values published for a Wave Plus.
"""

from .app import DashboardApp, create_app
from .state import DashboardPublisher

__all__ = ["DashboardApp", "DashboardPublisher", "create_app"]
