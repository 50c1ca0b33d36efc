# pricewatch/services/notifier.py

import logging
import httpx
from typing import Any, Dict, Optional

from pricewatch.core.errors import DeliveryError

logger = logging.getLogger(__name__)

class WebhookNotifier:
    """
    Delivers alerts to a single DingTalk-style robot webhook.

    Payload shape: {"msgtype": "markdown"|"text", "<msgtype>": {...}}.
    Never retries; the next scheduled pass is the retry.
    """

    def __init__(self, webhook_url: Optional[str], timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self.enabled = bool(webhook_url)
        self.client = client or httpx.AsyncClient(timeout=timeout)

        if self.enabled:
            logger.info("Webhook alerts ENABLED")
        else:
            logger.warning("Webhook alerts DISABLED (NOTIFIER_WEBHOOK_URL not set)")

    async def send_alert(self, title: str, body: str):
        await self.send_markdown(title, body)

    async def send_markdown(self, title: str, text: str):
        await self._post({
            "msgtype": "markdown",
            "markdown": {"title": title, "text": text},
        })

    async def send_text(self, content: str):
        await self._post({
            "msgtype": "text",
            "text": {"content": content},
        })

    async def _post(self, payload: Dict[str, Any]):
        if not self.enabled:
            logger.info(f"[webhook disabled] {payload}")
            return

        try:
            resp = await self.client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook request failed: {e!r}") from e

        if not resp.is_success:
            raise DeliveryError(f"Webhook returned HTTP {resp.status_code}")

        # DingTalk answers 200 with {"errcode": 310000, "errmsg": "..."} on rejection
        try:
            body = resp.json()
        except ValueError:
            return
        if isinstance(body, dict) and body.get("errcode", 0) != 0:
            raise DeliveryError(f"Webhook rejected message: {body.get('errcode')} {body.get('errmsg', '')}")

    async def close(self):
        await self.client.aclose()
