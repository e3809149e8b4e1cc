"""
Services built on the cache: secondary indexes and change notifications.
"""

from .index_engine import IndexEngine
from .notifications import NotificationRouter, ListenerRegistry, Subscription

__all__ = [
    'IndexEngine',
    'NotificationRouter',
    'ListenerRegistry',
    'Subscription',
]
