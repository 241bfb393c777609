"""MCP bridges exposing the RA-H graph tools to external assistants."""

from .server import create_server

__all__ = ["create_server"]
