from __future__ import annotations


class SourceWriter:
    """Indentation-aware text buffer shared by every builder of one module."""

    INDENT = "    "

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._align = 0

    @property
    def align(self) -> int:
        return self._align

    def append(self, text) -> None:
        self._parts.append(str(text))

    def indent(self) -> None:
        self._parts.append(self.INDENT * self._align)

    def incr_align(self) -> None:
        self._align += 1

    def decr_align(self) -> None:
        if self._align == 0:
            raise ValueError("unbalanced indentation: already at column 0")
        self._align -= 1

    def text(self) -> str:
        return "".join(self._parts)
