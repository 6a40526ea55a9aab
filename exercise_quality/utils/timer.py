from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

log = logging.getLogger(__name__)


@contextmanager
def timed(section: str, timings: Optional[Dict[str, float]] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        dur = time.perf_counter() - start
        log.debug("%s took %.2fs", section, dur)
        if timings is not None:
            timings[section] = round(dur, 4)
