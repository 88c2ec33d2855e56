"""Solar Autopilot application entry point and lifecycle orchestrator.

Startup sequence:
  config → SQLite → MQTT connect → telemetry subscription → price provider →
  learner → charging engine → engine command topics → MQTT listener
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path

from solar_autopilot import __version__
from solar_autopilot.config.manager import ConfigManager
from solar_autopilot.config.schema import AppConfig
from solar_autopilot.control.engine import ChargingEngine
from solar_autopilot.control.evaluator import DecisionEvaluator, PredictorStrategy
from solar_autopilot.control.hooks import AuditHook, LearnerHook
from solar_autopilot.db.engine import close_db, init_db
from solar_autopilot.db.repository import Repository
from solar_autopilot.hardware.base import TransportError
from solar_autopilot.learning.base import NoOpLearner, OutcomeLearner
from solar_autopilot.learning.heuristic import HeuristicLearner
from solar_autopilot.logging.structured import setup_logging
from solar_autopilot.mqtt.client import MQTTClient
from solar_autopilot.mqtt.publisher import DecisionPublisher
from solar_autopilot.mqtt.subscriber import EngineCommandSubscriber
from solar_autopilot.mqtt.telemetry import TelemetryCollector
from solar_autopilot.mqtt.topics import state_subscription
from solar_autopilot.tariff.base import PriceForecastProvider
from solar_autopilot.tariff.providers.tibber import TibberProvider

logger = logging.getLogger(__name__)

_PROVIDERS = {
    "tibber": TibberProvider,
}


def create_provider(config: AppConfig) -> PriceForecastProvider:
    provider_cls = _PROVIDERS.get(config.tariff.type)
    if provider_cls is None:
        raise ValueError(f"Unknown tariff provider: {config.tariff.type!r}")
    return provider_cls(config.tariff)


class Application:
    """Main application lifecycle manager.

    Wires all modules together and manages startup/shutdown ordering.
    """

    def __init__(self, config: AppConfig, config_manager: ConfigManager) -> None:
        self.config = config
        self.config_manager = config_manager
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()

        # References held for cleanup
        self._db = None
        self._mqtt_client: MQTTClient | None = None
        self._publisher: DecisionPublisher | None = None
        self._provider: PriceForecastProvider | None = None
        self.engine: ChargingEngine | None = None

    async def start(self) -> None:
        """Start all components in dependency order and run until stopped."""
        logger.info("Starting Solar Autopilot v%s", __version__)
        self._running = True
        self._stop_event.clear()

        # ── 1. Database ──────────────────────────────────────
        self._db = await init_db(self.config.db.path)
        repo = Repository(self._db)
        await self.config_manager.save_version(self._db)

        # ── 2. MQTT transport + telemetry ────────────────────
        client = MQTTClient(self.config.mqtt)
        self._mqtt_client = client
        collector = TelemetryCollector(self.config.hardware.topic_prefix)
        client.subscribe(state_subscription(self.config.hardware.topic_prefix), collector.handle_message)
        if self.config.mqtt.enabled:
            try:
                await client.connect()
            except TransportError as e:
                logger.error("%s; commands will fail until the broker is reachable", e)
        else:
            logger.warning("MQTT disabled: no live telemetry, commands will not be delivered")

        # ── 3. Price provider ────────────────────────────────
        self._provider = create_provider(self.config)

        # ── 4. Learner / predictor ───────────────────────────
        learner: OutcomeLearner
        primary = None
        if self.config.predictor.enabled:
            heuristic = HeuristicLearner(self.config.predictor)
            learner = heuristic
            primary = PredictorStrategy(heuristic, self.config.predictor.min_confidence)
            logger.info("Heuristic predictor enabled (min confidence %.0f%%)",
                        self.config.predictor.min_confidence * 100)
        else:
            learner = NoOpLearner()

        # ── 5. Engine ────────────────────────────────────────
        engine = ChargingEngine(
            config=self.config,
            telemetry=collector,
            provider=self._provider,
            transport=client,
            evaluator=DecisionEvaluator(self.config, primary=primary),
            hooks=[AuditHook(repo), LearnerHook(learner)],
        )
        self.engine = engine

        if client.is_connected:
            self._publisher = DecisionPublisher(
                publish_fn=client.publish,
                status_prefix=self.config.mqtt.status_prefix,
                status_fn=engine.status,
            )
            engine.add_hook(self._publisher)
            await self._publisher.publish_status(online=True)

            commands = EngineCommandSubscriber(engine, self.config.mqtt.status_prefix, self.config_manager)
            for topic in commands.topics:
                client.subscribe(topic, commands.handle_message)
            self._tasks.append(asyncio.create_task(client.listen(), name="mqtt-listener"))

        if self.config.engine.enabled:
            await engine.start()
        else:
            logger.info("Engine disabled in config; waiting without issuing commands")

        await self._stop_event.wait()

    async def stop(self) -> None:
        """Gracefully stop all components in reverse order.

        Inverter settings are left as they are; only an engine OFF command
        forces the safe state.
        """
        if not self._running:
            return

        logger.info("Shutting down Solar Autopilot")
        self._running = False
        self._stop_event.set()

        if self.engine is not None:
            await self.engine.graceful_shutdown()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._mqtt_client is not None:
            if self._publisher is not None:
                try:
                    await self._publisher.publish_status(online=False)
                except TransportError as e:
                    logger.warning("Could not publish offline status: %s", e)
            await self._mqtt_client.disconnect()

        if self._provider is not None:
            await self._provider.close()

        if self._db is not None:
            await close_db(self._db)
            self._db = None
        logger.info("Shutdown complete")


def main() -> None:
    """Entry point for the application."""
    defaults_path = Path(os.environ.get("SOLAR_AUTOPILOT_DEFAULTS", "config.defaults.yaml"))
    user_path = Path(os.environ.get("SOLAR_AUTOPILOT_CONFIG", "config.yaml"))

    config_manager = ConfigManager(defaults_path, user_path)
    config = config_manager.load()

    setup_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=config.logging.file,
    )

    app = Application(config, config_manager)
    stop_requested = False
    signal_count = 0

    async def _run() -> None:
        try:
            await app.start()
        finally:
            if app._running:
                await app.stop()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _request_stop() -> None:
        nonlocal stop_requested, signal_count
        signal_count += 1
        if signal_count >= 2:
            os._exit(130)
        if stop_requested or loop.is_closed():
            return
        stop_requested = True
        loop.call_soon_threadsafe(lambda: asyncio.create_task(app.stop()))

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_stop)
    else:
        signal.signal(signal.SIGINT, lambda *_: _request_stop())
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, lambda *_: _request_stop())

    try:
        loop.run_until_complete(_run())
    except KeyboardInterrupt:
        _request_stop()
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
    finally:
        pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            with contextlib.suppress(Exception):
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
