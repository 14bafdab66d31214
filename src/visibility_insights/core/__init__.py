"""Core business logic — API clients, normalization, aggregation, scoring and data models.

This module is framework-agnostic. It has no dependency on MCP, FastMCP,
or any server framework; the FastMCP server imports from here.
"""
