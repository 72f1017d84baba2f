"""Support code imported by generated binding modules.

Nothing here checks bounds or alignment. Generated accessors trust the caller
to pass a segment that is large enough and correctly laid out; violating that
contract is undefined behaviour, not a reported error.
"""

from __future__ import annotations

import ctypes
import struct
from typing import Any, Sequence, Union

from .layout import SCALAR, LayoutNode, ScalarType, leaf_element, offset_of, select, sequence_of


Segment = Union[bytearray, memoryview]

_INT_FORMATS = {1: "b", 2: "h", 4: "i", 8: "q"}
_ADDRESS_FORMATS = {1: "B", 2: "H", 4: "I", 8: "Q"}
_FLOAT_FORMATS = {4: "f", 8: "d"}


def codec_for(leaf: LayoutNode) -> struct.Struct:
    if leaf.kind != SCALAR or leaf.element_type is None:
        raise ValueError(f"no scalar codec for {leaf.kind} layout")
    if leaf.element_type.is_float:
        table = _FLOAT_FORMATS
    elif leaf.element_type is ScalarType.POINTER:
        table = _ADDRESS_FORMATS
    else:
        table = _INT_FORMATS
    fmt = table.get(leaf.size)
    if fmt is None:
        raise ValueError(f"unsupported {leaf.element_type.value} width: {leaf.size} bytes")
    return struct.Struct("=" + fmt)


class FieldAccess:
    """Reads and writes one scalar field (or scalar array field) of a layout.

    The field offset is resolved once from ``parent_layout`` and ``path``.
    ``index`` selects an element of a contiguous array of the parent layout,
    ``element`` an entry of the field itself when the field is an array.
    """

    def __init__(self, parent_layout: LayoutNode, path: Union[str, Sequence[str]], element_type: ScalarType) -> None:
        field_layout = select(parent_layout, path)
        leaf, count = leaf_element(field_layout)
        if leaf.kind != SCALAR or leaf.element_type is not element_type:
            found = leaf.element_type.value if leaf.element_type is not None else leaf.kind
            raise ValueError(f"field {path!r} holds {found}, not {element_type.value}")
        self.path = path
        self.element_type = element_type
        self.offset = offset_of(parent_layout, path)
        self.stride = parent_layout.byte_size
        self.count = count
        self.codec = codec_for(leaf)

    def __repr__(self) -> str:
        return f"FieldAccess({self.path!r}, {self.element_type.value}, offset={self.offset})"

    def get(self, seg: Segment, index: int = 0) -> Any:
        return self.codec.unpack_from(seg, index * self.stride + self.offset)[0]

    def set(self, seg: Segment, value: Any, index: int = 0) -> None:
        self.codec.pack_into(seg, index * self.stride + self.offset, value)

    def get_element(self, seg: Segment, element: int, index: int = 0) -> Any:
        position = index * self.stride + self.offset + element * self.codec.size
        return self.codec.unpack_from(seg, position)[0]

    def set_element(self, seg: Segment, element: int, value: Any, index: int = 0) -> None:
        position = index * self.stride + self.offset + element * self.codec.size
        self.codec.pack_into(seg, position, value)


def allocate(layout: LayoutNode) -> bytearray:
    return bytearray(layout.byte_size)


def non_closeable_slice(seg: Segment, offset: int, size: int) -> memoryview:
    # Releasing the returned view never releases ``seg``.
    return memoryview(seg)[offset:offset + size]


def as_array_restricted(address: int, layout: LayoutNode, count: int = 1) -> memoryview:
    """Unchecked view of ``count`` consecutive ``layout`` elements at ``address``.

    The address is not validated in any way. The memory must stay alive and
    writable for as long as the returned view is used.
    """
    size = sequence_of(layout, count).byte_size
    return memoryview((ctypes.c_ubyte * size).from_address(address))


class Arena:
    """Allocation scope whose regions are released together on close.

    Only the views returned by ``allocate`` are released. A slice taken from
    one of them (for example through ``non_closeable_slice``) is a separate
    view that keeps the storage alive and stays usable after ``close``.
    """

    def __init__(self) -> None:
        self._regions: list[memoryview] = []
        self._closed = False

    def __enter__(self) -> "Arena":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool | None:
        self.close()
        return None

    @property
    def closed(self) -> bool:
        return self._closed

    def allocate(self, layout: LayoutNode) -> memoryview:
        if self._closed:
            raise ValueError("arena is closed")
        region = memoryview(bytearray(layout.byte_size))
        self._regions.append(region)
        return region

    def close(self) -> None:
        if self._closed:
            return
        for region in self._regions:
            region.release()
        self._regions.clear()
        self._closed = True
