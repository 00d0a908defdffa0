"""Notification channel over the Slack Web API."""

from __future__ import annotations

from typing import Optional

import httpx

from ..exceptions import TransientExternalFailure
from .http import HttpService
from .retry import RetryPolicy


class SlackNotifier(HttpService):
    service_name = "slack"

    def __init__(
        self,
        token: str,
        base_url: str = "https://slack.com/api",
        timeout_seconds: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout_seconds=timeout_seconds,
            retry=retry,
            transport=transport,
        )

    async def send_direct_message(self, user: str, text: str) -> None:
        opened = await self._call("conversations.open", {"users": user})
        channel = (opened.get("channel") or {}).get("id")
        if not channel:
            raise TransientExternalFailure(self.service_name, f"no DM channel for {user}")
        await self._call("chat.postMessage", {"channel": channel, "text": text})

    async def _call(self, method: str, payload: dict) -> dict:
        response = await self.request("POST", f"/{method}", resource="slack method", json=payload)
        body = response.json()
        # Slack reports most failures as HTTP 200 with ok=false
        if not body.get("ok"):
            raise TransientExternalFailure(
                self.service_name, f"{method}: {body.get('error', 'unknown error')}", status_code=response.status_code
            )
        return body
