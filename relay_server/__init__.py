"""
Chat relay server package.

Main exports:
- Server: Main server class
- Session: Per-connection handshake and relay
- NameRegistry, SessionRegistry: Shared membership state
- Connection: Line-based client connection
"""

from relay_server.connection import Connection
from relay_server.registry import NameRegistry, SessionRegistry
from relay_server.session import Session, SessionState
from relay_server.server import Server

__version__ = "1.0.0"
__all__ = ['Server', 'Session', 'SessionState', 'NameRegistry', 'SessionRegistry', 'Connection']
