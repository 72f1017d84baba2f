from __future__ import annotations

from dataclasses import dataclass, replace
import enum
import sys
from typing import Iterable, Sequence, Union

from .errors import InvalidLength, UnresolvedPath


SCALAR = "scalar"
STRUCT = "struct"
UNION = "union"
SEQUENCE = "sequence"

GROUP_KINDS = {STRUCT, UNION}

DEFAULT_POINTER_SIZE = 8


class ScalarType(enum.Enum):
    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    POINTER = "pointer"

    @property
    def is_float(self) -> bool:
        return self in {ScalarType.FLOAT32, ScalarType.FLOAT64}

    @property
    def natural_size(self) -> int:
        if self is ScalarType.POINTER:
            return DEFAULT_POINTER_SIZE
        return _SCALAR_SIZES[self]


_SCALAR_SIZES = {
    ScalarType.INT8: 1,
    ScalarType.INT16: 2,
    ScalarType.INT32: 4,
    ScalarType.INT64: 8,
    ScalarType.FLOAT32: 4,
    ScalarType.FLOAT64: 8,
}


@dataclass(frozen=True)
class LayoutNode:
    """One level of a native memory layout.

    Offsets are never stored: struct members are placed one after another at
    their own alignment, union members all sit at offset 0 and element ``k``
    of a sequence sits at ``k * element.size``.
    """

    kind: str
    size: int
    align: int
    element_type: ScalarType | None = None
    children: tuple[tuple[str | None, "LayoutNode"], ...] = ()
    element: LayoutNode | None = None
    length: int = 0
    name: str | None = None

    @property
    def byte_size(self) -> int:
        return self.size

    @property
    def is_group(self) -> bool:
        return self.kind in GROUP_KINDS

    def with_alignment(self, align: int) -> "LayoutNode":
        _check_alignment(align)
        return replace(self, align=align)

    def with_name(self, name: str | None) -> "LayoutNode":
        return replace(self, name=name)

    def member_names(self) -> list[str]:
        return [name for name, _ in self.children if name is not None]

    def child_offsets(self) -> list[tuple[str | None, int, "LayoutNode"]]:
        if not self.is_group:
            raise ValueError(f"{self.kind} layout has no members")
        out: list[tuple[str | None, int, LayoutNode]] = []
        cursor = 0
        for name, child in self.children:
            if self.kind == UNION:
                out.append((name, 0, child))
                continue
            offset = _align_up(cursor, child.align)
            out.append((name, offset, child))
            cursor = offset + child.size
        return out


def _align_up(value: int, align: int) -> int:
    return (value + align - 1) // align * align


def _check_alignment(align: int) -> None:
    if not isinstance(align, int) or align < 1 or align & (align - 1):
        raise ValueError(f"alignment must be a positive power of two, got {align!r}")


def _check_members(members: tuple[tuple[str | None, LayoutNode], ...]) -> None:
    seen: set[str] = set()
    for name, child in members:
        if not isinstance(child, LayoutNode):
            raise ValueError(f"member {name!r} is not a layout: {child!r}")
        if name is None:
            continue
        if name in seen:
            raise ValueError(f"duplicate member name {name!r}")
        seen.add(name)


def scalar(element_type: ScalarType, size: int | None = None) -> LayoutNode:
    if size is None:
        size = element_type.natural_size
    _check_alignment(size)
    return LayoutNode(kind=SCALAR, size=size, align=size, element_type=element_type)


def pointer(size: int = DEFAULT_POINTER_SIZE) -> LayoutNode:
    return scalar(ScalarType.POINTER, size)


def sequence_of(element: LayoutNode, length: int) -> LayoutNode:
    if isinstance(length, bool) or not isinstance(length, int):
        raise InvalidLength(f"sequence length must be an integer, got {length!r}")
    if length < 0:
        raise InvalidLength(f"sequence length must be >= 0, got {length}")
    size = length * element.size
    if size > sys.maxsize:
        raise InvalidLength(f"sequence of {length} x {element.size} bytes overflows")
    return LayoutNode(kind=SEQUENCE, size=size, align=element.align, element=element, length=length)


def padding(size: int) -> LayoutNode:
    return sequence_of(scalar(ScalarType.INT8), size)


def _group_layout(
    kind: str,
    members: Iterable[tuple[str | None, LayoutNode]],
    name: str | None,
    size: int | None,
    align: int | None,
) -> LayoutNode:
    children = tuple((member_name, child) for member_name, child in members)
    _check_members(children)
    if align is None:
        align = max((child.align for _, child in children), default=1)
    _check_alignment(align)

    end = 0
    if kind == UNION:
        end = max((child.size for _, child in children), default=0)
    else:
        for _, child in children:
            end = _align_up(end, child.align) + child.size

    if size is None:
        size = _align_up(end, align)
    elif size < end:
        raise ValueError(f"{kind} {name or '<anonymous>'} size {size} is smaller than its members ({end} bytes)")
    return LayoutNode(kind=kind, size=size, align=align, children=children, name=name)


def struct_layout(
    members: Iterable[tuple[str | None, LayoutNode]],
    name: str | None = None,
    size: int | None = None,
    align: int | None = None,
) -> LayoutNode:
    return _group_layout(STRUCT, members, name, size, align)


def union_layout(
    members: Iterable[tuple[str | None, LayoutNode]],
    name: str | None = None,
    size: int | None = None,
    align: int | None = None,
) -> LayoutNode:
    return _group_layout(UNION, members, name, size, align)


def _split_path(path: Union[str, Sequence[str]]) -> list[str]:
    if isinstance(path, str):
        segments = path.split(".")
    else:
        segments = list(path)
    if not segments or any(not segment for segment in segments):
        raise UnresolvedPath(f"empty path segment in {path!r}")
    return segments


def _resolve(layout: LayoutNode, path: Union[str, Sequence[str]]) -> tuple[int, LayoutNode]:
    offset = 0
    current = layout
    for segment in _split_path(path):
        if not current.is_group:
            raise UnresolvedPath(f"cannot resolve {segment!r} in {current.kind} layout (path {path!r})")
        for name, child_offset, child in current.child_offsets():
            if name == segment:
                offset += child_offset
                current = child
                break
        else:
            owner = current.name or f"<anonymous {current.kind}>"
            raise UnresolvedPath(f"{owner} has no member {segment!r} (path {path!r})")
    return offset, current


def offset_of(layout: LayoutNode, path: Union[str, Sequence[str]]) -> int:
    return _resolve(layout, path)[0]


def select(layout: LayoutNode, path: Union[str, Sequence[str]]) -> LayoutNode:
    return _resolve(layout, path)[1]


def byte_size(layout: LayoutNode) -> int:
    return layout.size


def alignment(layout: LayoutNode) -> int:
    return layout.align


def leaf_element(layout: LayoutNode) -> tuple[LayoutNode, int]:
    count = 1
    current = layout
    while current.kind == SEQUENCE and current.element is not None:
        count *= current.length
        current = current.element
    return current, count
