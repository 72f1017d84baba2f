from __future__ import annotations

from typing import Iterable

from ..analysis.decl_types import CType, StructDecl, TypeRegistry
from ..analysis.decl_utils import _is_synthetic_member_name, _resolve_typedef
from ..layout import (
    DEFAULT_POINTER_SIZE,
    SCALAR,
    SEQUENCE,
    LayoutNode,
    ScalarType,
    leaf_element,
    padding,
    pointer,
    scalar,
    sequence_of,
    struct_layout,
    union_layout,
)
from .module_builder import ModuleBuilder
from .names import python_identifier
from .source_builder import SourceBuilder
from .struct_builder import SEQUENCE as SEQUENCE_ACCESS
from .struct_builder import SLICE_ONLY, VALUE, FieldBinding, StructBuilder


INT_TYPES = {1: ScalarType.INT8, 2: ScalarType.INT16, 4: ScalarType.INT32, 8: ScalarType.INT64}
FLOAT_TYPES = {4: ScalarType.FLOAT32, 8: ScalarType.FLOAT64}


def _align_up(value: int, align: int) -> int:
    return (value + align - 1) // align * align


class BindingWalker:
    """Turns declarations into layouts and drives one StructBuilder per aggregate.

    Members are visited in declaration order; scalars and pointers get value
    accessors, scalar arrays get element accessors, nested structs and unions
    get a slice plus a nested binding class, arrays of aggregates a slice only.
    """

    def __init__(self, registry: TypeRegistry, pointer_size: int = DEFAULT_POINTER_SIZE, log=None) -> None:
        self.registry = registry
        self.pointer_size = pointer_size
        self._log = log
        self._layouts: dict[tuple[str, str], LayoutNode] = {}

    def log(self, message: str) -> None:
        if self._log is not None:
            self._log(message)

    def resolve(self, type_ref: CType) -> CType:
        return _resolve_typedef(self.registry, type_ref, set())

    def struct_decl(self, type_ref: CType) -> StructDecl | None:
        resolved = self.resolve(type_ref)
        if resolved.kind != "named" or resolved.ref_kind not in {"struct", "union"} or not resolved.name:
            return None
        decl = self.registry.structs.get((resolved.ref_kind, resolved.name))
        if decl is None or decl.opaque:
            return None
        return decl

    def layout_for_type(self, type_ref: CType) -> LayoutNode | None:
        resolved = self.resolve(type_ref)
        if resolved.kind == "pointer":
            return pointer(self.pointer_size)
        if resolved.kind == "array":
            if resolved.target is None:
                return None
            element = self.layout_for_type(resolved.target)
            if element is None:
                return None
            # Flexible array members take no space.
            return sequence_of(element, resolved.count if resolved.count is not None else 0)
        if resolved.kind != "named":
            return None
        if resolved.ref_kind in {"struct", "union"}:
            decl = self.struct_decl(resolved)
            if decl is None:
                return None
            return self.layout_for_struct(decl)
        if resolved.ref_kind == "enum":
            enum_decl = self.registry.enums.get(resolved.name or "")
            size = enum_decl.size if enum_decl is not None and enum_decl.size else 4
            return self._int_layout(size)
        if resolved.ref_kind == "base":
            if resolved.name == "void" or not resolved.size:
                return None
            if resolved.encoding == "float":
                element_type = FLOAT_TYPES.get(resolved.size)
                if element_type is None:
                    return padding(resolved.size).with_alignment(min(resolved.size & -resolved.size, 16))
                return scalar(element_type)
            return self._int_layout(resolved.size)
        return None

    def _int_layout(self, size: int) -> LayoutNode:
        element_type = INT_TYPES.get(size)
        if element_type is None:
            return padding(size).with_alignment(min(size & -size, 16))
        return scalar(element_type)

    def layout_for_struct(self, decl: StructDecl) -> LayoutNode:
        key = (decl.kind, decl.name)
        cached = self._layouts.get(key)
        if cached is not None:
            return cached

        members: list[tuple[str | None, LayoutNode]] = []
        cursor = 0
        for member in decl.members:
            if member.bit_size is not None:
                self.log(f"{decl.name}.{member.name}: bitfield skipped")
                continue
            child = self.layout_for_type(member.type_ref)
            if child is None:
                self.log(f"{decl.name}.{member.name}: no layout for member type, skipped")
                continue
            if decl.kind == "union":
                members.append((member.name, child))
                continue
            offset = member.offset
            if offset is None:
                offset = _align_up(cursor, child.align)
            if offset < cursor:
                self.log(f"{decl.name}.{member.name}: overlaps previous member at {offset}, skipped")
                continue
            if offset % child.align:
                self.log(f"{decl.name}.{member.name}: offset {offset} is not {child.align}-aligned, packing")
                child = child.with_alignment(1)
            if offset > _align_up(cursor, child.align):
                members.append((None, padding(offset - cursor)))
            members.append((member.name, child))
            cursor = offset + child.size

        size = decl.size
        if size is not None and size < cursor:
            self.log(f"{decl.name}: declared size {size} is smaller than its members ({cursor}), ignoring")
            size = None
        build = union_layout if decl.kind == "union" else struct_layout
        layout = build(members, name=decl.name, size=size)
        self._layouts[key] = layout
        return layout

    def field_binding(self, name: str, child: LayoutNode, type_ref: CType) -> FieldBinding:
        leaf, _ = leaf_element(child)
        if child.kind == SCALAR:
            access_kind = VALUE
        elif child.kind == SEQUENCE and leaf.kind == SCALAR:
            access_kind = SEQUENCE_ACCESS
        else:
            access_kind = SLICE_ONLY
        return FieldBinding(
            python_name=python_identifier(name),
            native_name=name,
            layout=child,
            element_type=leaf.element_type if leaf.kind == SCALAR else None,
            access_kind=access_kind,
            type_ref=type_ref,
        )

    def nested_class_name(self, field: FieldBinding, decl: StructDecl) -> str:
        if decl.name_origin not in {"member", "anon"}:
            return decl.name
        if _is_synthetic_member_name(field.native_name):
            return decl.kind.capitalize()
        return field.python_name

    def emit_struct(self, parent: SourceBuilder, decl: StructDecl, class_name: str, type_ref: CType) -> StructBuilder:
        layout = self.layout_for_struct(decl)
        builder = StructBuilder(
            parent,
            class_name,
            None,
            layout,
            parent.constants,
            parent.annotation_writer,
            type_ref,
            log=self._log,
        )
        builder.class_begin()
        builder.emit_layout_handle_accessor()
        member_types = {member.name: member.type_ref for member in decl.members}
        children = dict(layout.children)
        for name in layout.member_names():
            child = children[name]
            field_type = member_types[name]
            field = self.field_binding(name, child, field_type)
            if field.access_kind == VALUE:
                builder.emit_field_access_handle_accessor(field)
                builder.emit_scalar_accessors(field)
                continue
            if field.access_kind == SEQUENCE_ACCESS:
                builder.emit_field_access_handle_accessor(field)
                builder.emit_sequence_accessors(field)
                builder.emit_slice_accessor(field)
                continue
            field = builder.emit_slice_accessor(field)
            nested = self.struct_decl(field_type)
            if nested is not None and child.is_group:
                nested_name = self.nested_class_name(field, nested)
                self.emit_struct(builder, nested, nested_name, self.resolve(field_type))
        builder.class_end()
        return builder


def render_bindings(
    registry: TypeRegistry,
    roots: Iterable[CType],
    pointer_size: int = DEFAULT_POINTER_SIZE,
    module_name: str = "bindings",
    source: str | None = None,
    log=None,
    names_log=None,
    constants_log=None,
) -> str:
    module = ModuleBuilder(
        module_name=module_name,
        pointer_size=pointer_size,
        source=source,
        log=log,
        names_log=names_log,
        constants_log=constants_log,
    )
    walker = BindingWalker(registry, pointer_size=pointer_size, log=log)
    module.module_begin()
    for root in roots:
        decl = walker.struct_decl(root)
        if decl is None:
            raise ValueError(f"{root.name or root.kind} is not a struct or union with a known layout")
        class_name = root.name if root.kind == "named" and root.ref_kind == "typedef" and root.name else decl.name
        walker.emit_struct(module, decl, class_name, root)
    return module.build()
