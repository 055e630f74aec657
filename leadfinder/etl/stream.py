"""Incremental parser for ``Business Name | https://website`` text streams."""

import logging
from typing import Iterator, List, Optional

from leadfinder.models import Discovery

logger = logging.getLogger(__name__)

DELIMITER = "|"


def parse_line(line: str) -> Optional[Discovery]:
    """Return a Discovery for a well-formed line, None for anything else."""
    line = line.strip()
    if DELIMITER not in line:
        return None

    parts = line.split(DELIMITER)
    name = parts[0].strip()
    website = parts[1].strip()
    if not name or not website.startswith("http"):
        logger.debug("Discarding malformed discovery line: %s", line[:200])
        return None
    return Discovery(name=name, website=website)


class LineStreamParser:
    """Buffers chunks and emits one Discovery per complete line.

    ``feed`` returns the discoveries completed by a chunk; ``close`` flushes
    the trailing partial line once the stream has ended.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.discarded = 0

    def feed(self, chunk: Optional[str]) -> List[Discovery]:
        if not chunk:
            return []
        self._buffer += chunk
        found: List[Discovery] = []
        while True:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            found.extend(self._emit(line))
        return found

    def close(self) -> List[Discovery]:
        line, self._buffer = self._buffer, ""
        return list(self._emit(line))

    def _emit(self, line: str) -> Iterator[Discovery]:
        if not line.strip():
            return
        discovery = parse_line(line)
        if discovery is None:
            self.discarded += 1
            return
        yield discovery
