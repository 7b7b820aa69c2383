"""Decay ticker (periodic catch-up evaluation).

Inside the web process ``create_app`` starts a ``DecayTicker`` thread. For a
deployment without the web app, run the loop on its own:
  python decay_worker.py

Environment:
- DECAY_TICK_SECONDS (upper bound between evaluations; default 60)
- plus the app's storage settings (STATE_BACKEND / DATABASE_URL / REDIS_URL)

Only one process should own the state at a time: the web app with its ticker,
or this worker, not both against the same store.
"""

import logging
import os
import threading
import time

from coordinator import StatEngine

logger = logging.getLogger(__name__)

INTERVAL = int(os.getenv("DECAY_TICK_SECONDS", "60"))


class DecayTicker:
    """Background thread that calls ``engine.tick()``.

    Sleeps until the next setting is due, capped at ``interval`` seconds, so a
    setting changed mid-sleep is picked up within one interval.
    """

    def __init__(self, engine: StatEngine, interval: float = INTERVAL):
        self.engine = engine
        self.interval = float(interval)
        self._stop = threading.Event()
        self.thread = None

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def start(self):
        if self.running:
            logger.warning("Decay ticker already running")
            return
        self._stop.clear()
        self.thread = threading.Thread(target=self._loop, name="decay-ticker", daemon=True)
        self.thread.start()
        logger.info("Decay ticker started (max interval %.0fs)", self.interval)

    def stop(self):
        self._stop.set()
        if self.thread:
            self.thread.join(timeout=5)
        self.thread = None
        logger.info("Decay ticker stopped")

    def run_once(self) -> int:
        try:
            results = self.engine.tick()
        except Exception as e:
            logger.error(f"Decay tick failed: {e}", exc_info=True)
            return 0
        return len(results)

    def _loop(self):
        while not self._stop.wait(self.engine.tick_interval(self.interval)):
            self.run_once()


def main():
    from app import create_app

    app = create_app({"DECAY_TICKER_ENABLED": False})
    engine: StatEngine = app.extensions["stat_engine"]
    ticker = DecayTicker(engine)
    logger.info("Decay worker started")
    try:
        while True:
            ticker.run_once()
            time.sleep(engine.tick_interval(ticker.interval))
    except KeyboardInterrupt:
        pass
    finally:
        engine.close()


if __name__ == "__main__":
    main()
