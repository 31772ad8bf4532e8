"""
Newline framing for chunked process output.

Pipes hand us arbitrary byte chunks. LineBuffer keeps the trailing partial
line between chunks so that the lines it yields are the same for every way
the stream could have been split.
"""

import codecs


class LineBuffer:
    """Carry-over buffer that turns byte chunks into complete text lines."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        """
        Append a chunk and return every line it completed.

        Args:
            chunk: Raw bytes read from the pipe.

        Returns:
            Complete lines without their newline terminator, in order.
        """
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []

        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> str | None:
        """Return the unterminated remainder once the stream has ended."""
        remainder = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        remainder = remainder.rstrip("\r")
        return remainder if remainder.strip() else None

    @property
    def pending(self) -> str:
        return self._pending
