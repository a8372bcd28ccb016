"""Account notification dispatchers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol
from uuid import UUID

from loguru import logger


@dataclass(slots=True)
class AccountNotification:
    """A push-style message addressed to one account."""

    account_id: UUID
    title: str
    body: str
    kind: str
    metadata: dict[str, str] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    """Minimal protocol for delivering account notifications."""

    async def send(self, notification: AccountNotification) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: writes the notification to the structured log."""

    async def send(self, notification: AccountNotification) -> None:
        logger.bind(metadata=notification.metadata).info(
            "Account notification",
            account_id=str(notification.account_id),
            kind=notification.kind,
            title=notification.title,
        )


@dataclass
class InMemoryNotificationDispatcher:
    """Stores notifications for inspection in tests."""

    sent: List[AccountNotification]
    fail_with: Optional[Exception]

    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.sent = []
        self.fail_with = fail_with

    async def send(self, notification: AccountNotification) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(notification)

    def for_account(self, account_id: UUID) -> list[AccountNotification]:
        return [item for item in self.sent if item.account_id == account_id]
