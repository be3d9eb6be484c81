# agrolink/cursor.py
import logging
from typing import Callable, Iterator, Optional, Tuple

log = logging.getLogger(__name__)


def parse_start_block(value) -> Optional[int]:
    """BLOCKCHAIN_START_BLOCK as a non-negative int, or None when unset or invalid."""
    if value is None or str(value).strip() == "":
        return None
    try:
        parsed = int(str(value).strip(), 10)
    except ValueError:
        parsed = -1
    if parsed < 0:
        log.warning("Invalid BLOCKCHAIN_START_BLOCK value: %r, falling back to current block", value)
        return None
    return parsed


def block_ranges(start: int, end: int, size: int) -> Iterator[Tuple[int, int]]:
    """Consecutive [from, to] ranges of at most `size` blocks covering start..end."""
    size = max(1, size)
    while start <= end:
        stop = min(start + size - 1, end)
        yield start, stop
        start = stop + 1


class BlockCursor:
    """
    Last fully processed block height. Lives only in process memory; the
    configured start block is the recovery point across restarts.
    """

    def __init__(self, last_checked: int):
        self.last_checked = last_checked

    @classmethod
    def seed(cls, start_block, head: Callable[[], int]) -> "BlockCursor":
        start = parse_start_block(start_block)
        if start is not None:
            log.info("Starting from configured BLOCKCHAIN_START_BLOCK = %s", start)
            # first window then covers start..latest
            return cls(start - 1)
        current = head()
        log.info("No start block configured, starting at chain head %s", current)
        return cls(current)

    def window(self, latest: int) -> Optional[Tuple[int, int]]:
        if latest <= self.last_checked:
            return None
        return self.last_checked + 1, latest

    def chunks(self, latest: int, size: int) -> Iterator[Tuple[int, int]]:
        """Split the pending window into ranges of at most `size` blocks."""
        window = self.window(latest)
        if window is None:
            return
        yield from block_ranges(window[0], window[1], size)

    def advance(self, to_block: int) -> None:
        if to_block > self.last_checked:
            self.last_checked = to_block

    def observe(self, block_number: Optional[int]) -> None:
        """Record a block seen on the live feed."""
        if block_number is not None:
            self.advance(block_number)
