"""Polling worker: ``python -m itp_studio.worker`` or ``itp-studio-worker``."""
from __future__ import annotations

import logging
import signal
import time
from typing import Optional

import schedule

from itp_studio.core.logging import configure_logging
from itp_studio.core.settings import Settings, ensure_directories, settings
from itp_studio.services.container import build_services
from itp_studio.services.orchestrator import JobProcessor

logger = logging.getLogger(__name__)


class Worker:
    def __init__(self, processor: JobProcessor, interval_s: int = 5):
        self.processor = processor
        self.interval_s = interval_s
        self.scheduler = schedule.Scheduler()
        self.running = False

    def tick(self) -> None:
        self.processor.tick()

    def stop(self, *_args) -> None:
        logger.info("Worker stopping")
        self.running = False

    def run_forever(self, install_signals: bool = True) -> None:
        if install_signals:
            signal.signal(signal.SIGINT, self.stop)
            signal.signal(signal.SIGTERM, self.stop)
        self.scheduler.every(self.interval_s).seconds.do(self.tick)

        logger.info(f"Worker started, polling every {self.interval_s}s")
        self.running = True
        self.tick()
        while self.running:
            self.scheduler.run_pending()
            time.sleep(1)
        self.scheduler.clear()
        logger.info("Worker stopped")


def main(config: Optional[Settings] = None, install_signals: bool = True) -> None:
    config = config or settings
    configure_logging(config.log_level)
    ensure_directories(config)
    services = build_services(config)
    Worker(services.processor, interval_s=config.worker_poll_interval_s).run_forever(install_signals)


if __name__ == "__main__":
    main()
