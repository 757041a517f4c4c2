"""Event notification package."""

from pennyledger.events.notifier import EventNotifier, Listener, configure_logging

__all__ = ["EventNotifier", "Listener", "configure_logging"]
