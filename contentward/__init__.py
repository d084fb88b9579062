"""ContentWard: policy enforcement and content rewriting for MCP traffic."""

__version__ = "0.3.0"
