"""
Connection management: credential references and the connection registry.
"""

from .secrets import SecretStore, redact

__all__ = ["SecretStore", "redact"]
