from __future__ import annotations

from typing import Optional

from .mseed import parse_header, rewrite_network
from .models import ForwardUnit, Record


class RecordTranslator:
    """
    Turn a received record into a DataLink-ready ForwardUnit.

    Two explicit stages: optional network code rewrite on a copy of the raw
    bytes, then header parsing of the rewritten copy. The forwarded bytes are
    always the post-rewrite bytes.
    """

    def __init__(self, override_code: Optional[str] = None):
        self._override = override_code or None

    @property
    def override_code(self) -> Optional[str]:
        return self._override

    def rewrite(self, raw: bytes) -> bytes:
        if self._override is None:
            return raw
        return rewrite_network(raw, self._override)

    def translate(self, record: Record) -> ForwardUnit:
        """Raises ParseError when the header is malformed."""
        raw = self.rewrite(record.raw)
        header = parse_header(raw)
        return ForwardUnit(raw=raw, stream=header.stream, span=header.span)
