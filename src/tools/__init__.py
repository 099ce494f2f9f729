"""MCP tool implementations for the workspace toolkits."""
