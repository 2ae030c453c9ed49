"""
FAN-OUT MODULE

Topic-based push delivery over Socket.IO.
"""

from .topics import TopicRegistry
from .socket_server import FanOutBroadcaster

__all__ = [
    'TopicRegistry',
    'FanOutBroadcaster',
]
