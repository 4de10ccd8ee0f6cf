"""
Auction timing

A listing created with startTime == 0 starts on its first bid. Until that bid
lands the contract stores endTime as a *duration*; the bid transaction rewrites
it to an absolute timestamp. The subgraph may still carry the duration, so the
true end is derived here:

- endTime > now           -> already converted, use as-is
- endTime <= now, bids    -> first bid timestamp + endTime
- endTime <= now, no bids -> not started, end unknown (None)

endTime == type(uint48).max means the listing never expires (None).
"""

import time
from typing import Iterable, Optional

from models.marketplace import MAX_UINT48, BidRecord


def effective_end_time(
    start_time: int,
    end_time: int,
    bids: Iterable[BidRecord] = (),
    now: Optional[int] = None,
) -> Optional[int]:
    """Absolute end timestamp of a listing, or None when it has none (yet)."""
    if end_time >= MAX_UINT48:
        return None

    if start_time > 0:
        return end_time

    now = int(time.time()) if now is None else now
    if end_time > now:
        return end_time

    timestamps = [b.timestamp for b in bids if b.timestamp > 0]
    if not timestamps:
        return None

    return min(timestamps) + end_time


def seconds_remaining(
    start_time: int,
    end_time: int,
    bids: Iterable[BidRecord] = (),
    now: Optional[int] = None,
) -> Optional[int]:
    now = int(time.time()) if now is None else now
    end = effective_end_time(start_time, end_time, bids, now)
    if end is None:
        return None
    return max(0, end - now)


def is_ended(
    start_time: int,
    end_time: int,
    bids: Iterable[BidRecord] = (),
    now: Optional[int] = None,
) -> bool:
    now = int(time.time()) if now is None else now
    end = effective_end_time(start_time, end_time, bids, now)
    return end is not None and end <= now
