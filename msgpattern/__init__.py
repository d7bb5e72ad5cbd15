"""TCP message-pattern RPC server with length-prefixed JSON framing."""

__version__ = "0.1.0"
__all__ = ["config", "example", "logutil", "protocol", "registry", "server"]