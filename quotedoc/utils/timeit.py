# quotedoc/utils/timeit.py
from __future__ import annotations
import logging
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

_log = logging.getLogger("quotedoc.timeit")


@contextmanager
def timeit(label: str, sink: Optional[Dict[str, float]] = None) -> Iterator[None]:
    """
    Log how long the block took (DEBUG). When `sink` is given the duration in
    ms is also stored under `label`.
    """
    t0 = time.perf_counter()
    try:
        yield
    finally:
        dt = (time.perf_counter() - t0) * 1000.0
        if sink is not None:
            sink[label] = dt
        _log.debug("[timeit] %s: %.1f ms", label, dt)


__all__ = ["timeit"]
