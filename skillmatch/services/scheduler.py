"""Periodic trend runs for hosts without an external scheduler."""
import asyncio
from typing import Optional

from skillmatch.services.trending import TrendAggregator
from skillmatch.utils.exceptions import SkillMatchError
from skillmatch.utils.logging_config import get_logger

logger = get_logger(__name__)


async def run_periodically(
    aggregator: TrendAggregator,
    interval_hours: Optional[float] = None,
    stop_event: Optional[asyncio.Event] = None,
    run_on_start: bool = True,
    max_runs: Optional[int] = None,
) -> int:
    """
    Run the trend batch every `interval_hours` until `stop_event` is set.

    A failed run is logged and the loop carries on with the next interval.
    The stop event is also handed to each run so that a stop request skips
    the entities not yet processed. Returns the number of runs started.
    """
    interval_hours = interval_hours or aggregator.settings.trend_run_interval_hours
    stop_event = stop_event or asyncio.Event()
    interval_seconds = interval_hours * 3600
    runs = 0

    if not run_on_start and await _wait(stop_event, interval_seconds):
        return runs

    while not stop_event.is_set():
        runs += 1
        logger.info(f"Running scheduled trend calculation #{runs}")
        try:
            summary = await aggregator.run(cancel_event=stop_event)
            if summary.failed:
                logger.warning(f"Scheduled trend calculation #{runs} had {summary.failed} failures")
        except SkillMatchError as e:
            logger.error(f"Scheduled trend calculation #{runs} aborted: {e.message}")
        except Exception as e:
            logger.error(f"Error in scheduled trend calculation #{runs}: {e}")

        if max_runs is not None and runs >= max_runs:
            break
        if await _wait(stop_event, interval_seconds):
            break
    return runs


async def _wait(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`; True if stopped meanwhile."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False
