"""Order alerts -- change classification, mute-gated delivery."""

from recon.alerts.cache import AttendedState, OrderSnapshotCache
from recon.alerts.dispatcher import DispatchResult, OrderAlertDispatcher
from recon.alerts.kv import InMemoryKeyValueStore, KeyValueStore, SettingsKeyValueStore, mute_key
from recon.alerts.notifier import HubNotifier, LogNotifier, Notifier

__all__ = [
    "AttendedState",
    "DispatchResult",
    "HubNotifier",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "LogNotifier",
    "Notifier",
    "OrderAlertDispatcher",
    "OrderSnapshotCache",
    "SettingsKeyValueStore",
    "mute_key",
]
