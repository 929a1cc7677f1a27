"""Header-based format detection against Pillow's registered decoders."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import IO

from PIL import Image

logger = logging.getLogger(__name__)

# Pillow's own open() hands the same prefix length to plugin signature checks.
HEADER_BYTES: int = 16

# Pillow's open() tolerates the same failures from signature checks on short input.
_ACCEPT_ERRORS = (SyntaxError, IndexError, TypeError, struct.error)


@dataclass(frozen=True)
class SniffResult:
    """Outcome of sniffing the head of a stream.

    When ``rewound`` is false the header bytes have been consumed and the
    caller must re-open the source before decoding.
    """

    format_name: str | None
    rewound: bool
    header_size: int

    @property
    def truncated(self) -> bool:
        """The whole source is shorter than a full header."""
        return self.header_size < HEADER_BYTES


def sniff(header: bytes) -> str | None:
    """Return the lowercase format id whose decoder claims ``header``.

    Only plugins that register a signature check take part; a plugin that
    would need a trial decode to recognize its input never claims a header.
    """
    Image.init()
    prefix = header[:HEADER_BYTES]
    for format_id in Image.ID:
        _factory, accept = Image.OPEN[format_id]
        if accept is None:
            continue
        try:
            claimed = accept(prefix)
        except _ACCEPT_ERRORS:
            continue
        # A string result is Pillow's "recognized but codec unavailable" notice.
        if isinstance(claimed, str) or not claimed:
            continue
        return format_id.lower()
    return None


def _read_header(stream: IO[bytes]) -> bytes:
    chunks: list[bytes] = []
    remaining = HEADER_BYTES
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def sniff_stream(stream: IO[bytes]) -> SniffResult:
    """Sniff the head of ``stream`` and rewind it when possible."""
    rewound = stream.seekable()
    start = stream.tell() if rewound else 0
    header = _read_header(stream)
    detected = sniff(header)
    if rewound:
        stream.seek(start)
    logger.debug("Sniffed %d header bytes as %s (rewound=%s)", len(header), detected, rewound)
    return SniffResult(format_name=detected, rewound=rewound, header_size=len(header))
