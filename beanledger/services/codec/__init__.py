"""
Format Codec Package

Bidirectional conversion between ledger text and directives.

    codec = LedgerCodec()
    directives = codec.decode(text)
    text = codec.encode(directives)

Round-trip law: decode(encode(D)) == D for every valid directive list D.
Whitespace and comment placement may be normalized; content never is.
"""

from typing import Iterable, Optional

from beanledger.errors import ParseError
from beanledger.services.codec.decoder import (
    DirectiveSpan,
    LedgerDecoder,
    ParsedLedger,
)
from beanledger.services.codec.encoder import LedgerEncoder, format_amount, format_number


class LedgerCodec:
    """Decoder and encoder sharing one identifier metadata key."""

    def __init__(self, id_key: str = "id"):
        self.id_key = id_key
        self._decoder = LedgerDecoder(id_key)
        self._encoder = LedgerEncoder(id_key)

    def decode(self, text: str) -> list:
        """Parse text into directives; raises ParseError on malformed input."""
        return self._decoder.decode(text)

    def parse(self, text: str, file: Optional[str] = None) -> ParsedLedger:
        """Like decode, but keeps the source lines of every directive."""
        return self._decoder.parse(text, file)

    def encode(self, directives: Iterable) -> str:
        return self._encoder.encode(directives)

    def encode_checked(self, directives: list, file: Optional[str] = None) -> str:
        """
        Encode and prove the result decodes back to the same directives.

        Nothing reaches disk without passing this check.
        """
        text = self.encode(directives)
        parsed = self._decoder.parse(text, file)
        expected = [d.model_dump() for d in directives]
        actual = [d.model_dump() for d in parsed.directives]
        if actual != expected:
            line = 1
            for index, (before, after) in enumerate(zip(expected, actual)):
                if before != after:
                    line = parsed.spans[index].line
                    break
            raise ParseError(
                "Encoded text does not decode to the same directives",
                line=line,
                file=file,
            )
        return text


__all__ = [
    "DirectiveSpan",
    "LedgerCodec",
    "LedgerDecoder",
    "LedgerEncoder",
    "ParseError",
    "ParsedLedger",
    "format_amount",
    "format_number",
]
