"""
Frappe MCP Server

Exposes Frappe/ERPNext document, schema and method-call operations as MCP
tools, with per-request API credentials.
"""

__version__ = "0.3.0"
