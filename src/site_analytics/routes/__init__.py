"""
Analytics HTTP routes.

The collect router takes tracker traffic; the dashboard router serves the
read-only aggregation endpoints.
"""

from .collect import create_collect_router
from .dashboard import create_dashboard_router

__all__ = ["create_collect_router", "create_dashboard_router"]
