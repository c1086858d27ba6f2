"""Event streaming layer — EventBus infrastructure.

Quick start::

    from stackup.events import QueueEventBus, TOPIC_UNITS

    bus = QueueEventBus()
    subscription = bus.subscribe([TOPIC_UNITS])
"""

from stackup.events.bus import (
    TOPIC_PLANS,
    TOPIC_UNITS,
    EventBus,
    FanoutEventBus,
    LogEventBus,
    NullEventBus,
    QueueEventBus,
    Subscription,
)

__all__ = [
    "EventBus",
    "NullEventBus",
    "LogEventBus",
    "QueueEventBus",
    "FanoutEventBus",
    "Subscription",
    "TOPIC_PLANS",
    "TOPIC_UNITS",
]
