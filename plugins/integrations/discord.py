"""Discord notifier -- posts task announcements to Discord channels.

Output only: messages go out through the Discord REST API with a bot token.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)

_API_BASE = "https://discord.com/api/v10"
# Discord content limit is 2000 chars.
_CHUNK_SIZE = 1900


def chunk_text(text: str, size: int = _CHUNK_SIZE) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)] or [""]


class DiscordNotifier:
    """Notifier implementation for Discord.

    `send_text` goes to the given channel, or to `default_channel_id` when
    none is given. API errors are raised to the caller.
    """

    def __init__(
        self,
        bot_token: str,
        default_channel_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._default_channel_id = default_channel_id
        self._client = client or httpx.AsyncClient(
            timeout=30.0,
            headers={
                "Authorization": f"Bot {bot_token}",
                "Content-Type": "application/json",
                "User-Agent": "Cerebro/0.1",
            },
        )

    @property
    def name(self) -> str:
        return "discord"

    async def close(self) -> None:
        await self._client.aclose()

    async def send_text(self, text: str, channel_id: str | None = None) -> None:
        target = channel_id or self._default_channel_id
        if not target:
            logger.debug("Discord notification dropped: no channel configured")
            return
        await self._send_message(str(target), text)

    async def _send_message(self, channel_id: str, text: str) -> dict:
        result: dict = {}
        for chunk in chunk_text(text):
            response = await self._client.post(
                f"{_API_BASE}/channels/{channel_id}/messages",
                json={"content": chunk},
            )
            if response.status_code == 429:
                retry_after = float(response.json().get("retry_after", 1.0))
                await asyncio.sleep(retry_after)
                response = await self._client.post(
                    f"{_API_BASE}/channels/{channel_id}/messages",
                    json={"content": chunk},
                )

            result = response.json()
            if response.status_code >= 400:
                raise RuntimeError(f"Discord API error {response.status_code}: {result}")

        return result
