"""User notifications for finished jobs.

Fire-and-forget: delivery failures are logged and never propagate, so they can not
roll back job or ledger state. Telegram accounts get a Bot API message; every other
channel gets an in-app notification row that the front-ends poll.
"""

from typing import Callable, Optional, Protocol
from uuid import UUID

import httpx
import structlog

from vitrine.models.job import SourceChannel
from vitrine.models.notification import Notification, NotificationKind

logger = structlog.get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class Notifier(Protocol):
    async def notify(
        self,
        account_id: UUID,
        job_id: UUID,
        kind: NotificationKind,
        message: str,
        channel: SourceChannel,
    ) -> None: ...


class ChannelNotifier:
    """Routes a notification to the channel the job came from."""

    def __init__(
        self,
        uow_factory: Callable,
        telegram_bot_token: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.uow_factory = uow_factory
        self.telegram_bot_token = telegram_bot_token
        self.http_client = http_client

    async def notify(
        self,
        account_id: UUID,
        job_id: UUID,
        kind: NotificationKind,
        message: str,
        channel: SourceChannel,
    ) -> None:
        try:
            if channel == SourceChannel.TELEGRAM_BOT and self.telegram_bot_token:
                if await self._send_telegram(account_id, message):
                    logger.info("notification.sent", job_id=str(job_id), channel=channel.value, kind=kind.value)
                    return

            async with await self.uow_factory() as uow:
                await uow.notifications.add(
                    Notification(
                        account_id=account_id,
                        job_id=job_id,
                        kind=kind,
                        channel=channel.value,
                        message=message,
                    )
                )
            logger.info("notification.stored", job_id=str(job_id), channel=channel.value, kind=kind.value)

        except Exception as e:
            logger.error(
                "notification.failed",
                job_id=str(job_id),
                channel=channel.value,
                kind=kind.value,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def _send_telegram(self, account_id: UUID, message: str) -> bool:
        """Send through the Bot API. False when the account has no linked chat."""
        async with await self.uow_factory() as uow:
            account = await uow.accounts.get_by_id(account_id)
        if account is None or not account.telegram_chat_id:
            return False

        url = f"{TELEGRAM_API_URL}/bot{self.telegram_bot_token}/sendMessage"
        payload = {"chat_id": account.telegram_chat_id, "text": message}
        if self.http_client is not None:
            response = await self.http_client.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(url, json=payload)
        response.raise_for_status()
        return True
