"""
Hybrid live/archive chat message store with retrieval-augmented insights.

The entry point is 'MessagingController'; 'build_controller' wires one from
'Settings':

    from messaging_toolkit import build_controller, get_settings

    controller = build_controller(get_settings())
"""

from messaging_toolkit.config import Settings, get_settings
from messaging_toolkit.conversation_database.controller import MessagingController
from messaging_toolkit.factory import build_controller

__version__ = "0.1.0"

__all__ = [
    "MessagingController",
    "Settings",
    "build_controller",
    "get_settings",
]
