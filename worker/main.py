"""
CCPI Worker Service

Main background worker that:
1. Collects indicator snapshots from FRED, Yahoo Finance and manual overrides
2. Calculates CCPI scores
3. Stores readings in database
4. Sends Discord alerts on regime changes and crash amplifiers
"""

import asyncio
import logging
import os
import signal
from datetime import datetime, timezone
from typing import Optional

from ccpi.calculator import CCPICalculator, CCPIOutput
from ccpi.collector import SnapshotCollector, load_overrides
from ccpi.discord_alerter import DiscordAlerter
from ccpi.database import (
    Database, Alert, get_latest_reading, reading_from_output, save_alert, save_reading,
)
from ccpi.pillars import YieldCurvePolicy

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


class CCPIWorker:
    """
    Main worker service for CCPI calculation and alerting
    """

    def __init__(
        self,
        database_url: str,
        discord_webhook_url: Optional[str] = None,
        fred_api_key: Optional[str] = None,
        overrides_path: Optional[str] = None,
        polling_interval: int = 900,  # 15 minutes
        yield_curve_policy: YieldCurvePolicy = YieldCurvePolicy.DUAL,
        collector: Optional[SnapshotCollector] = None,
    ):
        self.database_url = database_url
        self.discord_webhook_url = discord_webhook_url
        self.fred_api_key = fred_api_key
        self.overrides_path = overrides_path
        self.polling_interval = polling_interval

        self.calculator = CCPICalculator(yield_curve_policy=yield_curve_policy)
        self.collector = collector

        self.db: Optional[Database] = None
        self.alerter: Optional[DiscordAlerter] = None

        self._running = False
        self._shutdown_event = asyncio.Event()

        # Regime level of the last stored reading, for change detection
        self._previous_regime: Optional[int] = None
        self._previous_amplified = False
        self._latest_output: Optional[CCPIOutput] = None

    async def _load_previous_state(self):
        """
        Restore the last regime from the database so a restart does not
        re-announce the current regime.
        """
        try:
            async with self.db.session() as session:
                reading = await get_latest_reading(session)
            if reading is None:
                logger.info("No stored readings, starting fresh")
                return
            self._previous_regime = reading.regime_level
            self._previous_amplified = (reading.total_bonus or 0) > 0
            logger.info(f"Restored last reading: CCPI {reading.ccpi} ({reading.regime_name})")
        except Exception as e:
            logger.error(f"Failed to load previous reading from database: {e}")

    async def start(self):
        """Start the worker service"""
        logger.info("Starting CCPI Worker...")

        # Initialize database
        self.db = Database(self.database_url)
        await self.db.create_tables()
        logger.info("Database initialized")

        await self._load_previous_state()

        # Initialize Discord alerter
        if self.discord_webhook_url:
            self.alerter = DiscordAlerter(self.discord_webhook_url)
            await self.alerter.send_test_message()
            logger.info("Discord alerter initialized")

        if self.collector is None:
            self.collector = SnapshotCollector(
                fred_api_key=self.fred_api_key,
                overrides=load_overrides(self.overrides_path),
            )

        self._running = True

        tasks = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._wait_for_shutdown()),
        ]

        logger.info("CCPI Worker started successfully")
        logger.info(f"Polling every {self.polling_interval}s")

        # Wait for shutdown
        await self._shutdown_event.wait()

        # Cleanup
        logger.info("Shutting down...")
        self._running = False

        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)

        if self.collector:
            await self.collector.close()

        if self.alerter:
            await self.alerter.close()

        if self.db:
            await self.db.close()

        logger.info("CCPI Worker stopped")

    async def _poll_loop(self):
        """Collect, evaluate, store and alert once per interval"""
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in poll loop: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.polling_interval)
            except asyncio.CancelledError:
                break

    async def run_once(self) -> CCPIOutput:
        """One polling cycle"""
        snapshot = await self.collector.collect()
        output = self.calculator.evaluate(snapshot)
        self._latest_output = output

        logger.info(
            f"CCPI: {output.ccpi} (base {output.base_ccpi} + bonus {output.total_bonus}) "
            f"{output.regime.name}, certainty {output.certainty}%, "
            f"{output.active_canaries} canaries"
        )
        if output.snapshot.defaulted:
            logger.warning(f"{len(output.snapshot.defaulted)} indicators using baseline defaults")

        await self._save_reading(output)
        await self._check_alerts(output)
        return output

    async def _check_alerts(self, output: CCPIOutput):
        previous = self._previous_regime
        self._previous_regime = output.regime.level

        if previous != output.regime.level:
            if previous is not None:
                logger.info(f"Regime change: level {previous} -> {output.regime.level}")
            await self._send_alert(output, previous)

        amplified = output.total_bonus > 0
        if amplified and not self._previous_amplified:
            await self._send_amplifier_alert(output)
        self._previous_amplified = amplified

    async def _save_reading(self, output: CCPIOutput):
        """Save a CCPI reading to the database"""
        if not self.db:
            return
        try:
            async with self.db.session() as session:
                await save_reading(session, reading_from_output(output))
        except Exception as e:
            logger.error(f"Failed to save reading: {e}")

    async def _record_alert(self, output: CCPIOutput, alert_type: str, message: str,
                            sent: bool, previous: Optional[int] = None):
        if not self.db:
            return
        try:
            async with self.db.session() as session:
                await save_alert(session, Alert(
                    triggered_at=datetime.now(timezone.utc),
                    alert_type=alert_type,
                    ccpi=output.ccpi,
                    regime_level=output.regime.level,
                    previous_regime_level=previous,
                    message=message,
                    discord_sent=sent,
                ))
        except Exception as e:
            logger.error(f"Failed to save alert: {e}")

    async def _send_alert(self, output: CCPIOutput, previous: Optional[int]):
        """Send a regime change alert"""
        sent = False
        if self.alerter:
            try:
                sent = await self.alerter.send_regime_change_alert(output, previous)
            except Exception as e:
                logger.error(f"Failed to send alert: {e}")

        message = f"CCPI {output.ccpi}: {output.regime.name}"
        await self._record_alert(output, 'REGIME_CHANGE', message, sent, previous)

    async def _send_amplifier_alert(self, output: CCPIOutput):
        sent = False
        if self.alerter:
            try:
                sent = await self.alerter.send_crash_amplifier_alert(output)
            except Exception as e:
                logger.error(f"Failed to send amplifier alert: {e}")

        message = "; ".join(a.reason for a in output.crash_amplifiers)
        await self._record_alert(output, 'CRASH_AMPLIFIER', message, sent)
        logger.info(f"Crash amplifiers active: +{output.total_bonus} ({message})")

    async def _wait_for_shutdown(self):
        """Wait for shutdown signal"""
        loop = asyncio.get_running_loop()

        def handle_signal():
            logger.info("Received shutdown signal")
            self._shutdown_event.set()

        # Register signal handlers
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        # Wait forever (until signal)
        await asyncio.Event().wait()

    def stop(self):
        self._shutdown_event.set()

    def get_latest_output(self) -> Optional[CCPIOutput]:
        """Get the last computed result"""
        return self._latest_output


async def main():
    """Main entry point"""
    # Load .env file
    from dotenv import load_dotenv
    load_dotenv()

    # Load configuration from environment
    database_url = os.getenv('DATABASE_URL', 'postgresql://localhost/ccpi')
    discord_webhook = os.getenv('DISCORD_WEBHOOK_URL')
    fred_key = os.getenv('FRED_API_KEY')
    overrides_path = os.getenv('CCPI_SNAPSHOT_OVERRIDES')
    polling_interval = int(os.getenv('CCPI_POLL_INTERVAL', '900'))
    policy = YieldCurvePolicy(os.getenv('CCPI_YIELD_CURVE_POLICY', 'dual').lower())

    if not discord_webhook:
        logger.warning("DISCORD_WEBHOOK_URL not set, alerts will be disabled")

    if not fred_key:
        logger.warning("FRED_API_KEY not set, macro indicators will use baseline defaults")

    # Create and run worker
    worker = CCPIWorker(
        database_url=database_url,
        discord_webhook_url=discord_webhook,
        fred_api_key=fred_key,
        overrides_path=overrides_path,
        polling_interval=polling_interval,
        yield_curve_policy=policy,
    )

    await worker.start()


if __name__ == '__main__':
    asyncio.run(main())
