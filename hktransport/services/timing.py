import logging
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def timed_phase(phases: dict, name: str):
    """Record the wall time of one run phase into `phases[name]` (seconds)."""
    start = time.perf_counter()
    try:
        yield
    finally:
        phases[name] = round(time.perf_counter() - start, 3)
        logger.info(f"Phase '{name}' took {phases[name]:.2f}s")


def format_phases(phases: dict) -> str:
    return ", ".join(f"{name} {seconds:.2f}s" for name, seconds in phases.items())
