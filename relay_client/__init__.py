"""
Interactive console client for the chat relay server.
"""

from relay_client.client import Client

__all__ = ['Client']
