# gainday/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- Host applications plug in their own notifiers without inheriting anything
- Test doubles work without explicit inheritance
"""

from __future__ import annotations

from typing import Protocol


class Notifier(Protocol):
    """
    Receives change notifications after snapshots are written.

    Implementations should be quick; the refresh and backfill services
    swallow and log anything raised here.
    """

    def notify_data_changed(self) -> None:
        ...

    def refresh_widgets(self) -> None:
        ...
