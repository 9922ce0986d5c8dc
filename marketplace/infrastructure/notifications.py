"""Best-effort notification dispatch.

Posts a small JSON payload to the notifications service when one is
configured. Failures are logged and dropped; a booking never fails because a
notification could not be delivered.
"""

from typing import Optional

import httpx

from marketplace.core_settings import get_settings
from shared.core import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.url = url if url is not None else settings.NOTIFICATIONS_URL
        self.timeout = timeout if timeout is not None else settings.NOTIFICATIONS_TIMEOUT

    def notify(self, user_id: Optional[int], title: str, message: str, kind: str = "info") -> None:
        if user_id is None:
            return
        payload = {"user_id": user_id, "title": title, "message": message, "type": kind}
        if not self.url:
            logger.info(
                f"Notification for user {user_id}: {title}",
                extra={'extra_fields': payload},
            )
            return
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                f"Notification delivery failed for user {user_id}: {e}",
                extra={'extra_fields': payload},
            )
