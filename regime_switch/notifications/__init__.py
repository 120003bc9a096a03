"""Regime change notifications."""

from regime_switch.notifications.event_bus import (
    RegimeChangeHandler,
    RegimeEventBus,
    SubscriberStats,
)

__all__ = ["RegimeChangeHandler", "RegimeEventBus", "SubscriberStats"]
