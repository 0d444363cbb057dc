"""Cooperative cancellation.

Long operations accept an optional ``threading.Event``; setting it from
another thread stops the operation at the next checkpoint. Checkpoints sit
between components during analysis and between steps of a transaction.
"""

from __future__ import annotations

import threading

from .errors import Cancelled


def checkpoint(token: threading.Event | None, where: str) -> None:
    """Raise ``Cancelled`` if ``token`` has been set."""
    if token is not None and token.is_set():
        raise Cancelled(f"Cancelled before {where}")
