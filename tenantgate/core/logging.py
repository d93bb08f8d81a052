from __future__ import annotations

import logging
import sys

from tenantgate.core.config import get_settings


def configure_logging(level: str | None = None) -> None:
    # Install a single stdout handler; replacing handlers avoids duplicates under reload.
    resolved = (level or get_settings().log_level).upper()
    root = logging.getLogger()
    root.setLevel(resolved)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.handlers = [handler]
