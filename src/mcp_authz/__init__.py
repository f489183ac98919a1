"""OAuth 2.1 authorization server core for MCP connectors."""

__version__ = "0.1.0"
