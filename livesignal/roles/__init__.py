"""Role orchestrators.

- registry: code-keyed session arena
- client: single-session client
- host: multi-session host over one shared channel
"""

__all__ = [
    "ClientRole",
    "HostRole",
    "SessionRegistry",
]

from livesignal.roles.registry import SessionRegistry
from livesignal.roles.client import ClientRole
from livesignal.roles.host import HostRole
