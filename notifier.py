# notifier.py
"""
Outbound notifier: fire-and-forget POST to the automation workflow (n8n).

Failures are logged and dropped. Nothing here is retried and nothing here
changes the response sent to the webhook caller.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class OutboundNotifier:
    def __init__(self, client: httpx.AsyncClient, url: Optional[str]):
        self.client = client
        self.url = url

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def notify(self, payload: Dict[str, Any]) -> bool:
        """
        POST `payload` as JSON. Returns True only on a 2xx response.

        A malformed URL is treated like any transport failure.
        """
        if not self.url:
            return False
        try:
            resp = await self.client.post(self.url, json=payload)
            resp.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("Automation webhook error: %s", e)
            return False
        logger.info("Automation webhook notified (status=%s)", resp.status_code)
        return True
