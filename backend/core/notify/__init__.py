"""Session tracking and debounced tool-list change notifications."""

from .notifier import ChangeNotifier, NotificationSink, Subscription, SubscriptionState
from .sessions import Session, SessionRegistry, tools_list_changed

__all__ = [
    "ChangeNotifier",
    "NotificationSink",
    "Session",
    "SessionRegistry",
    "Subscription",
    "SubscriptionState",
    "tools_list_changed",
]
