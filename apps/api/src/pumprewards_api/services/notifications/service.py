"""Best-effort delivery helpers used after a ledger commit."""

from __future__ import annotations

from loguru import logger

from pumprewards_api.observability.points import PointsObservabilityStore, get_points_store

from .backend import AccountNotification, NotificationDispatcher


async def notify_best_effort(
    dispatcher: NotificationDispatcher,
    notification: AccountNotification,
    *,
    observability: PointsObservabilityStore | None = None,
) -> bool:
    """Send ``notification``; a failed delivery never reaches the caller.

    The balance change it describes is already committed, so the failure is
    logged and counted instead.
    """

    store = observability or get_points_store()
    try:
        await dispatcher.send(notification)
    except Exception as exc:
        store.record_side_effect(notification.kind, ok=False)
        logger.warning(
            "Account notification failed",
            account_id=str(notification.account_id),
            kind=notification.kind,
            error=str(exc),
        )
        return False
    store.record_side_effect(notification.kind, ok=True)
    return True


__all__ = ["notify_best_effort"]
