"""
Discord Webhook Alerter

Sends CCPI alerts to Discord channels via webhooks.
Simple, no bot required - just POST to the webhook URL.
"""

import asyncio
import httpx
import logging
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass
from enum import Enum

from ccpi.calculator import CCPIOutput, REGIMES

logger = logging.getLogger(__name__)


class AlertLevel(Enum):
    LOW_RISK = 0x2ecc71       # Green
    NORMAL = 0x3498db         # Blue
    ELEVATED = 0xf1c40f       # Yellow
    HIGH_ALERT = 0xe67e22     # Orange
    CRASH_WATCH = 0xe74c3c    # Red


REGIME_COLORS = {
    1: AlertLevel.LOW_RISK,
    2: AlertLevel.NORMAL,
    3: AlertLevel.ELEVATED,
    4: AlertLevel.HIGH_ALERT,
    5: AlertLevel.CRASH_WATCH,
}

MAX_CANARIES_IN_EMBED = 5


@dataclass
class DiscordEmbed:
    """Discord embed structure"""
    title: str
    description: str
    color: int
    fields: list[dict] = None
    footer: dict = None
    timestamp: str = None

    def to_dict(self) -> dict:
        embed = {
            'title': self.title,
            'description': self.description,
            'color': self.color,
        }
        if self.fields:
            embed['fields'] = self.fields
        if self.footer:
            embed['footer'] = self.footer
        if self.timestamp:
            embed['timestamp'] = self.timestamp
        return embed


class DiscordAlerter:
    """
    Sends alerts to Discord via webhook

    Features:
    - Rate limiting to avoid spam
    - Cooldown per alert key
    - Embed colors by regime
    """

    def __init__(
        self,
        webhook_url: str,
        cooldown_seconds: int = 1800,  # 30 minute cooldown per alert key
        rate_limit_per_minute: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.cooldown_seconds = cooldown_seconds
        self.rate_limit_per_minute = rate_limit_per_minute

        # Tracking
        self._last_alert_time: dict[str, datetime] = {}
        self._alerts_this_minute: int = 0
        self._minute_start: datetime = datetime.now(timezone.utc)

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        return self._client

    async def close(self):
        """Close the client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _check_rate_limit(self) -> bool:
        """Check if we're within rate limits"""
        now = datetime.now(timezone.utc)

        # Reset counter if minute has passed
        if (now - self._minute_start).total_seconds() >= 60:
            self._alerts_this_minute = 0
            self._minute_start = now

        return self._alerts_this_minute < self.rate_limit_per_minute

    def _check_cooldown(self, key: str) -> bool:
        """Check if an alert key is still in cooldown"""
        if key not in self._last_alert_time:
            return True

        elapsed = (datetime.now(timezone.utc) - self._last_alert_time[key]).total_seconds()
        return elapsed >= self.cooldown_seconds

    def _mark_sent(self, key: str):
        self._last_alert_time[key] = datetime.now(timezone.utc)
        self._alerts_this_minute += 1

    def _get_alert_color(self, regime_level: int) -> int:
        return REGIME_COLORS.get(regime_level, AlertLevel.NORMAL).value

    def _pillar_field(self, output: CCPIOutput) -> dict:
        return {
            'name': 'Pillar Scores',
            'value': "\n".join(f"{p.name}: {p.value}" for p in output.pillars),
            'inline': False,
        }

    def _canary_field(self, output: CCPIOutput) -> dict:
        lines = [
            f"[{c.severity.value.upper()}] {c.signal}"
            for c in output.canaries[:MAX_CANARIES_IN_EMBED]
        ]
        return {
            'name': f'Top Canaries ({output.active_canaries} active)',
            'value': "\n".join(lines) or "None",
            'inline': False,
        }

    def build_regime_change_embed(self, output: CCPIOutput, previous_level: Optional[int]) -> DiscordEmbed:
        regime = output.regime
        if previous_level is None:
            title = f"[CCPI] {regime.name}: {output.ccpi}/100"
        else:
            previous = REGIMES[previous_level - 1]
            direction = "ESCALATED" if regime.level > previous_level else "EASED"
            title = f"[CCPI {direction}] {previous.name} -> {regime.name}"

        fields = [
            {
                'name': 'CCPI',
                'value': f"**{output.ccpi}**/100",
                'inline': True,
            },
            {
                'name': 'Base / Bonus',
                'value': f"{output.base_ccpi} + {output.total_bonus}",
                'inline': True,
            },
            {
                'name': 'Certainty',
                'value': f"{output.certainty}%",
                'inline': True,
            },
            self._pillar_field(output),
            self._canary_field(output),
            {
                'name': f'Playbook: {output.playbook.bias}',
                'value': "\n".join(f"- {s}" for s in output.playbook.strategies[:3]),
                'inline': False,
            },
        ]

        return DiscordEmbed(
            title=title,
            description=regime.description,
            color=self._get_alert_color(regime.level),
            fields=fields,
            footer={'text': 'Crash & Correction Prediction Index'},
            timestamp=output.timestamp.isoformat(),
        )

    async def send_regime_change_alert(self, output: CCPIOutput, previous_level: Optional[int] = None) -> bool:
        """
        Send a regime change alert to Discord

        Returns True if sent, False if rate limited, in cooldown or failed
        """
        if not self._check_rate_limit():
            logger.warning("Rate limit reached, skipping alert")
            return False

        key = f"REGIME_{output.regime.level}"
        if not self._check_cooldown(key):
            logger.debug(f"{key} still in cooldown")
            return False

        embed = self.build_regime_change_embed(output, previous_level)
        success = await self._send_webhook({'embeds': [embed.to_dict()]})

        if success:
            self._mark_sent(key)

        return success

    async def send_crash_amplifier_alert(self, output: CCPIOutput) -> bool:
        """Alert when crash amplifiers add a bonus on top of the base index"""
        if not output.crash_amplifiers:
            return False

        if not self._check_rate_limit():
            logger.warning("Rate limit reached, skipping alert")
            return False

        key = "AMPLIFIERS"
        if not self._check_cooldown(key):
            logger.debug("Amplifier alert still in cooldown")
            return False

        reasons = "\n".join(f"+{a.points} {a.reason}" for a in output.crash_amplifiers)
        embed = DiscordEmbed(
            title=f"[CRASH AMPLIFIERS] +{output.total_bonus} pts -> CCPI {output.ccpi}",
            description=f"Acute stress detected on top of a base index of {output.base_ccpi}",
            color=AlertLevel.CRASH_WATCH.value,
            fields=[
                {
                    'name': 'Triggered',
                    'value': reasons,
                    'inline': False,
                },
                {
                    'name': 'Regime',
                    'value': output.regime.name,
                    'inline': True,
                },
            ],
            footer={'text': 'Crash Amplifier Alert'},
            timestamp=output.timestamp.isoformat(),
        )

        success = await self._send_webhook({'embeds': [embed.to_dict()]})

        if success:
            self._mark_sent(key)

        return success

    async def send_test_message(self) -> bool:
        """Send a test message to verify webhook is working"""
        bands = "\n".join(
            f"{r.name}: {r.lower}-{(REGIMES[i + 1].lower - 1) if i + 1 < len(REGIMES) else 100}"
            for i, r in enumerate(REGIMES)
        )
        embed = DiscordEmbed(
            title="CCPI Bot Connected",
            description="Crash & Correction Prediction Index alerts are now active.",
            color=AlertLevel.NORMAL.value,
            fields=[
                {
                    'name': 'What is CCPI?',
                    'value': (
                        "CCPI combines momentum, risk appetite, valuation and macro "
                        "indicators to estimate near-term correction risk."
                    ),
                    'inline': False,
                },
                {
                    'name': 'Regimes',
                    'value': bands,
                    'inline': False,
                },
            ],
            footer={'text': 'CCPI Bot v1.0'},
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

        return await self._send_webhook({'embeds': [embed.to_dict()]})

    async def _send_webhook(self, payload: dict) -> bool:
        """Send payload to Discord webhook"""
        try:
            client = await self._get_client()

            response = await client.post(
                self.webhook_url,
                json=payload,
                headers={'Content-Type': 'application/json'},
            )
            if response.status_code in (200, 204):
                logger.info("Discord alert sent successfully")
                return True
            elif response.status_code == 429:
                # Rate limited by Discord
                data = response.json()
                retry_after = data.get('retry_after', 5)
                logger.warning(f"Discord rate limited, retry after {retry_after}s")
                await asyncio.sleep(retry_after)
                return False
            else:
                text = response.text
                logger.error(f"Discord webhook failed: {response.status_code} - {text}")
                return False

        except Exception as e:
            logger.error(f"Discord webhook error: {e}")
            return False
