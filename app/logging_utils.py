"""
app/logging_utils.py

Structured logging helpers for inventory lifecycle events.
"""

from __future__ import annotations

import json
import logging
from typing import Any


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one lifecycle event (session, backup, sweep) as a compact JSON line.
    """

    payload = {"event": event, **{key: value for key, value in fields.items() if value is not None}}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))
