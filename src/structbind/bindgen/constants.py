from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from ..layout import (
    SCALAR,
    SEQUENCE,
    UNION,
    LayoutNode,
    ScalarType,
    offset_of,
    pointer,
    struct_layout,
    union_layout,
)
from .names import NameRegistry, python_identifier


LAYOUT_MODULE = "_layout"
RUNTIME_MODULE = "_rt"
POINTER_CONSTANT = "C_POINTER"


@dataclass(frozen=True)
class ConstantHandle:
    name: str
    kind: str
    source: str

    def call_string(self) -> str:
        return self.name


def render_scalar_type(element_type: ScalarType) -> str:
    return f"{LAYOUT_MODULE}.ScalarType.{element_type.name}"


def render_layout(layout: LayoutNode) -> str:
    """Python expression that rebuilds ``layout`` from ``structbind.layout``."""
    if layout.kind == SCALAR:
        assert layout.element_type is not None
        if layout.element_type is ScalarType.POINTER:
            text = f"{LAYOUT_MODULE}.pointer({layout.size})"
        elif layout.size == layout.element_type.natural_size:
            text = f"{LAYOUT_MODULE}.scalar({render_scalar_type(layout.element_type)})"
        else:
            text = f"{LAYOUT_MODULE}.scalar({render_scalar_type(layout.element_type)}, {layout.size})"
        natural_align = layout.size
    elif layout.kind == SEQUENCE:
        assert layout.element is not None
        text = f"{LAYOUT_MODULE}.sequence_of({render_layout(layout.element)}, {layout.length})"
        natural_align = layout.element.align
    else:
        members = []
        for name, child in layout.children:
            if name is None and child.kind == SEQUENCE and child.align == 1:
                members.append(f"(None, {LAYOUT_MODULE}.padding({child.size}))")
            else:
                members.append(f"({name!r}, {render_layout(child)})")
        builder = union_layout if layout.kind == UNION else struct_layout
        natural = builder(layout.children, name=layout.name)
        args = ["[" + ", ".join(members) + "]"]
        if layout.name is not None:
            args.append(f"name={layout.name!r}")
        if layout.size != natural.size:
            args.append(f"size={layout.size}")
        text = f"{LAYOUT_MODULE}.{builder.__name__}({', '.join(args)})"
        natural_align = natural.align
    if layout.align != natural_align:
        text += f".with_alignment({layout.align})"
    return text


def _constant_identifier(qualified_name: str, suffix: str) -> str:
    base = qualified_name.replace(".", "_").replace("$", "_")
    return python_identifier(f"{base}_{suffix}")


class ConstantRegistry:
    """Deduplicating table of module-level constants used by generated accessors.

    Identical requests return the identical handle; identifiers come from the
    module naming scope so they never clash with generated class names.
    """

    def __init__(self, names: NameRegistry | None = None, log=None) -> None:
        self._names = names if names is not None else NameRegistry()
        self._log = log
        self._by_key: dict[tuple, ConstantHandle] = {}
        self._order: list[ConstantHandle] = []

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[ConstantHandle]:
        return iter(self._order)

    def _add(self, key: tuple, requested: str, kind: str, source: str) -> ConstantHandle:
        handle = self._by_key.get(key)
        if handle is not None:
            return handle
        handle = ConstantHandle(name=self._names.unique_name(requested), kind=kind, source=source)
        self._by_key[key] = handle
        self._order.append(handle)
        if self._log is not None:
            self._log(f"{handle.name} = {source}")
        return handle

    def register_layout(self, qualified_name: str, layout: LayoutNode) -> ConstantHandle:
        return self._add(
            ("layout", qualified_name, layout),
            _constant_identifier(qualified_name, "LAYOUT"),
            "layout",
            render_layout(layout),
        )

    def pointer_layout(self, size: int) -> ConstantHandle:
        layout = pointer(size)
        return self._add(("layout", POINTER_CONSTANT, layout), POINTER_CONSTANT, "layout", render_layout(layout))

    def register_field_access_handle(
        self,
        qualified_name: str,
        native_name: str,
        layout: LayoutNode,
        element_type: ScalarType | None,
        parent_layout_field_name: str,
        parent_layout: LayoutNode,
    ) -> ConstantHandle:
        if element_type is None:
            raise ValueError(f"{qualified_name}: field access handles need a scalar element type")
        # Fails with UnresolvedPath before anything is emitted.
        offset_of(parent_layout, native_name)
        source = (
            f"{RUNTIME_MODULE}.FieldAccess({parent_layout_field_name}, {native_name!r}, "
            f"{render_scalar_type(element_type)})"
        )
        return self._add(
            ("access", qualified_name, native_name, layout, element_type, parent_layout_field_name, parent_layout),
            _constant_identifier(qualified_name, "ACCESS"),
            "access",
            source,
        )

    def emit(self, builder) -> None:
        for handle in self._order:
            builder.indent()
            builder.append(f"{handle.name} = {handle.source}\n")
