"""Visibility Insights MCP Server.

Ask your AI how a business location performs in local search: impressions,
calls, website clicks, direction requests, search keywords and a 100-point
visibility score built from profile, review and performance data.
"""

__version__ = "0.1.0"
