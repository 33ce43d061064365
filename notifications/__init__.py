"""
DomainSentinel Notification Modules

Channel transports, the multi-channel dispatcher and the deduplication gate.
"""

from .dedup import COOLDOWN, DeduplicationGate
from .dispatcher import NotificationDispatcher, summarize_failures

__all__ = [
    'COOLDOWN',
    'DeduplicationGate',
    'NotificationDispatcher',
    'summarize_failures',
]
