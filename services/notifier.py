# services/notifier.py
"""
Battle announcements for a Discord channel webhook.

Notifications are sent after the battle transaction has committed. A failed
delivery is logged and dropped; it never touches battle state.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

import aiohttp

from config import Settings
from game.exceptions import TransientError

logger = logging.getLogger(__name__)

MODE_EMOJI = {
    "NORMAL": "👑",
    "UPSIDE_DOWN": "🔄",
    "SHARE": "🤝",
    "JACKPOT": "🎰",
}

MODE_NAMES = {
    "NORMAL": "Highest Wins",
    "UPSIDE_DOWN": "Lowest Wins",
    "SHARE": "Share Mode",
    "JACKPOT": "Jackpot",
}


class NullNotifier:
    """Used when no webhook is configured"""

    async def battle_created(self, info: dict) -> bool:
        logger.debug(f"Battle {info.get('battle_id')} created (notifications disabled)")
        return False

    async def battle_finished(self, info: dict) -> bool:
        logger.debug(f"Battle {info.get('battle_id')} finished (notifications disabled)")
        return False

    async def close(self):
        pass


class DiscordNotifier:
    def __init__(
        self,
        webhook_url: str,
        app_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
    ):
        self.webhook_url = webhook_url
        self.app_url = app_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    def _battle_url(self, battle_id: int) -> str:
        return f"{self.app_url}/battles/{battle_id}"

    def build_created_payload(self, info: dict) -> dict:
        mode = info.get("mode", "NORMAL")
        return {
            "username": "Pack-Attack Bot",
            "embeds": [{
                "title": f"⚔️ New battle #{info['battle_id']}",
                "description": (
                    f"**{info.get('creator') or 'Someone'}** opened a new battle!\n\n"
                    f"🎮 **[Join now]({self._battle_url(info['battle_id'])})**"
                ),
                "color": 0x8B5CF6,
                "fields": [
                    {"name": "📦 Box", "value": info.get("box_name", "?"), "inline": True},
                    {"name": "👥 Players", "value": str(info.get("players")), "inline": True},
                    {"name": "🔄 Rounds", "value": str(info.get("rounds")), "inline": True},
                    {
                        "name": f"{MODE_EMOJI.get(mode, '🎮')} Win condition",
                        "value": MODE_NAMES.get(mode, mode),
                        "inline": True,
                    },
                    {"name": "🪙 Entry fee", "value": f"{info.get('entry_fee', 0):,} coins", "inline": True},
                ],
                "timestamp": datetime.now().isoformat(),
            }],
        }

    def build_finished_payload(self, info: dict) -> dict:
        winner = info.get("winner")
        description = (
            f"🏆 **{winner}** takes the pot of {info.get('total_prize', 0):,} coins!"
            if winner else
            f"🤝 The pot of {info.get('total_prize', 0):,} coins was shared."
        )
        return {
            "username": "Pack-Attack Bot",
            "embeds": [{
                "title": f"🏁 Battle #{info['battle_id']} finished",
                "description": description,
                "url": self._battle_url(info["battle_id"]),
                "color": 0x22C55E,
                "timestamp": datetime.now().isoformat(),
            }],
        }

    async def _post_once(self, payload: dict):
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.webhook_url, json=payload) as response:
                    if response.status == 429 or response.status >= 500:
                        raise TransientError(f"Discord webhook returned {response.status}")
                    if response.status >= 400:
                        text = await response.text()
                        logger.error(f"❌ Discord webhook rejected payload: {response.status} {text}")
                        return False
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientError(f"Discord webhook unreachable: {e}") from e

    async def send(self, payload: dict) -> bool:
        """Deliver with bounded retries and exponential backoff"""
        for attempt in range(self.max_retries + 1):
            try:
                return await self._post_once(payload)
            except TransientError as e:
                if attempt == self.max_retries:
                    logger.error(f"❌ Discord notification dropped after {attempt + 1} attempts: {e}")
                    return False
                delay = self.backoff_base * (2 ** attempt)
                logger.warning(f"⚠️ {e}; retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
        return False

    async def battle_created(self, info: dict) -> bool:
        sent = await self.send(self.build_created_payload(info))
        if sent:
            logger.info(f"✅ Battle {info['battle_id']} announced on Discord")
        return sent

    async def battle_finished(self, info: dict) -> bool:
        return await self.send(self.build_finished_payload(info))

    async def close(self):
        pass


def build_notifier(settings: Settings):
    if settings.DISCORD_WEBHOOK_URL:
        return DiscordNotifier(
            settings.DISCORD_WEBHOOK_URL,
            app_url=settings.APP_URL,
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            max_retries=settings.WEBHOOK_MAX_RETRIES,
        )
    return NullNotifier()
