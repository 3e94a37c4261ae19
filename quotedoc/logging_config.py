# quotedoc/logging_config.py
from __future__ import annotations
import logging
from typing import Optional

from quotedoc.config import get_settings

_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging once for the process.
    Level comes from the argument, else LOG_LEVEL, else INFO.
    Calling it again only adjusts the level.
    """
    lvl_name = (level or get_settings().log_level or "INFO").upper()
    lvl = getattr(logging, lvl_name, logging.INFO)

    root = logging.getLogger()
    if not any(getattr(h, "_quotedoc", False) for h in root.handlers):
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter(_FORMAT))
        h._quotedoc = True  # type: ignore[attr-defined]
        root.addHandler(h)
    root.setLevel(lvl)

    # uvicorn installs its own handlers; keep its access log quieter than ours
    logging.getLogger("uvicorn.access").setLevel(max(lvl, logging.WARNING))
