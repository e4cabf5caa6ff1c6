# gainday/services/snapshots/notifier.py
"""Default Notifier: records change notifications in the log."""

import logging

from gainday.services.protocols import Notifier

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Notifier used when the host application does not supply one."""

    def notify_data_changed(self) -> None:
        logger.info("Snapshot data changed")

    def refresh_widgets(self) -> None:
        logger.info("Widget refresh requested")


def notify_safely(notifier: Notifier) -> bool:
    """
    Call both notifier hooks. Failures do not propagate; they are logged
    at DEBUG only, since the hooks are fire-and-forget.

    Returns:
        True if both hooks ran without raising
    """
    ok = True
    for hook in (notifier.notify_data_changed, notifier.refresh_widgets):
        try:
            hook()
        except Exception as e:
            ok = False
            logger.debug(f"Notifier hook {hook.__name__} failed: {e}")
    return ok
