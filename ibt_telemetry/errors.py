from __future__ import annotations

from typing import Optional


class TelemetryError(Exception):
    """Base class for errors raised while reading a recording."""


class UnrecoverableMetadata(TelemetryError, ValueError):
    def __init__(self, line: Optional[int], problem: str) -> None:
        self.line = line
        self.problem = problem
        where = f"line {line}" if line is not None else "unknown line"
        super().__init__(f"Session info could not be repaired ({where}): {problem}")


class DuplicateDescriptorWarning(UserWarning):
    """Two variable descriptors share a name case-insensitively; the last one wins."""


class OffsetOutOfRange(TelemetryError, ValueError):
    pass


class ShortRead(TelemetryError, EOFError):
    def __init__(self, offset: int, expected: int, actual: int) -> None:
        self.offset = offset
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Short read at byte {offset}: expected {expected} bytes, got {actual}"
        )


class IndexOutOfRange(TelemetryError, IndexError):
    pass


class ClosedSource(TelemetryError, ValueError):
    pass
