"""
Event records for the per-month audit log.
"""

from __future__ import annotations

from typing import Any, NamedTuple

import numpy as np


class Event(NamedTuple):
    """
    Time-stamped event emitted by one of the pipeline stages.

    Events are what the presentation layer shows next to the numbers: a sale
    that realized a gain, a forced liquidation, a buy that could not be routed,
    a phase change.

    Attributes:
        t: The simulated month (np.datetime64[M])
        kind: Event type (e.g. 'sell', 'buy', 'tax', 'liquidation', 'phase_change')
        message: Human-readable description
        meta: Optional dictionary with machine-readable details
    """

    t: np.datetime64
    kind: str
    message: str
    meta: dict[str, Any] | None = None
