from __future__ import annotations

from dataclasses import dataclass, replace

from ..analysis.decl_types import CType
from ..layout import LayoutNode, ScalarType, offset_of
from .annotations import AnnotationWriter, array_of, pointer_to
from .constants import LAYOUT_MODULE, RUNTIME_MODULE, ConstantHandle, ConstantRegistry
from .source_builder import SourceBuilder


VALUE = "value"
SEQUENCE = "sequence"
SLICE_ONLY = "slice"

# Fixed per-class methods; nested class names must avoid them.
EPILOGUE_NAMES = (
    "layout",
    "sizeof",
    "allocate",
    "allocate_in",
    "allocate_array",
    "allocate_array_in",
    "allocate_pointer_slot",
    "allocate_pointer_slot_in",
    "reinterpret_restricted",
)

# Every field claims all of these in its class scope, whatever its kind.
ACCESSOR_SUFFIXES = ("get", "set", "get_at", "set_at", "slice", "access")


@dataclass(frozen=True)
class FieldBinding:
    python_name: str
    native_name: str
    layout: LayoutNode
    element_type: ScalarType | None = None
    access_kind: str = VALUE
    type_ref: CType | None = None


def _hint(py_type: str, anno: str) -> str:
    if not anno:
        return py_type
    return f"Annotated[{py_type}, {anno!r}]"


def _python_type(element_type: ScalarType | None) -> str:
    if element_type is not None and element_type.is_float:
        return "float"
    return "int"


def _leaf_type_ref(type_ref: CType | None) -> CType | None:
    while type_ref is not None and type_ref.kind == "array":
        type_ref = type_ref.target
    return type_ref


class StructBuilder(SourceBuilder):
    """Emits the accessor class for one C struct or union.

    Every write is forwarded to ``prev`` so nested classes land inside the
    body of the class that encloses them. Field offsets are always taken from
    ``parent_layout``, this struct's own layout, which the generated code
    reaches through the ``parent_layout_field_name`` constant.
    """

    def __init__(
        self,
        prev: SourceBuilder,
        class_name: str,
        parent_layout_field_name: str | None,
        parent_layout: LayoutNode,
        constants: ConstantRegistry,
        annotation_writer: AnnotationWriter,
        struct_type: CType | None,
        log=None,
    ) -> None:
        if not parent_layout.is_group:
            raise ValueError(f"{class_name}: bindings need a struct or union layout, got {parent_layout.kind}")
        unique_name = prev.unique_nested_class_name(class_name)
        names = prev._names.child()
        names.reserve(*EPILOGUE_NAMES)
        super().__init__(unique_name, prev.qualify(unique_name), constants, names, log=log)
        self.prev = prev
        self.parent_layout = parent_layout
        if parent_layout_field_name is None:
            parent_layout_field_name = constants.register_layout(self.qualified_name, parent_layout).name
        self.parent_layout_field_name = parent_layout_field_name
        self.annotation_writer = annotation_writer
        if struct_type is None:
            struct_type = CType(kind="named", name=parent_layout.name or unique_name, ref_kind=parent_layout.kind)
        self.struct_type = struct_type
        self.struct_anno = annotation_writer.c_annotation(struct_type)
        self.struct_array_anno = annotation_writer.c_annotation(array_of(struct_type))
        self.struct_ptr_anno = annotation_writer.c_annotation(pointer_to(struct_type))
        self.fields: list[FieldBinding] = []
        self._bound: dict[str, FieldBinding] = {}
        self._nested = isinstance(prev, StructBuilder)
        self._closed = False

    def append(self, text) -> None:
        self.prev.append(text)

    def indent(self) -> None:
        self.prev.indent()

    def incr_align(self) -> None:
        self.prev.incr_align()

    def decr_align(self) -> None:
        self.prev.decr_align()

    @property
    def pointer_size(self) -> int:
        return self.prev.pointer_size

    def builder_opened(self, builder: SourceBuilder) -> None:
        self.prev.builder_opened(builder)

    def check_close_order(self, builder: SourceBuilder) -> None:
        self.prev.check_close_order(builder)

    def builder_closed(self, builder: SourceBuilder) -> None:
        self.prev.builder_closed(builder)

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError(f"binding {self.qualified_name} is already closed")

    def _record(self, field: FieldBinding) -> FieldBinding:
        self._check_open()
        bound = self._bound.get(field.native_name)
        if bound is None:
            python_name = self._names.unique_prefix(field.python_name, ACCESSOR_SUFFIXES)
            bound = replace(field, python_name=python_name)
            self._bound[field.native_name] = bound
            self.fields.append(bound)
        return bound

    def _seg_hint(self, anno: str | None = None) -> str:
        return _hint(f"{RUNTIME_MODULE}.Segment", self.struct_anno if anno is None else anno)

    def _value_hint(self, field: FieldBinding) -> str:
        anno = self.annotation_writer.c_annotation(_leaf_type_ref(field.type_ref))
        if not anno:
            anno = self.annotation_writer.scalar_annotation(field.element_type)
        return _hint(_python_type(field.element_type), anno)

    def _layout_handle(self) -> ConstantHandle:
        return self.constants.register_layout(self.qualified_name, self.parent_layout)

    def _access_handle(self, field: FieldBinding) -> ConstantHandle:
        return self.constants.register_field_access_handle(
            f"{self.qualified_name}${field.python_name}",
            field.native_name,
            field.layout,
            field.element_type,
            self.parent_layout_field_name,
            self.parent_layout,
        )

    def _emit_method(self, signature: str, body: list[str], doc: list[str] | None = None) -> None:
        self.incr_align()
        self.emit_lines(["@staticmethod", f"def {signature}:"])
        self.incr_align()
        if doc:
            self.emit_docstring(doc)
        self.emit_lines(body, blank_before=False)
        self.decr_align()
        self.decr_align()

    def class_begin(self) -> None:
        self._check_open()
        self.builder_opened(self)
        if self._nested:
            self.incr_align()
            self.append("\n")
        self.indent()
        self.append(f"class {self.class_name}:\n")
        self.incr_align()
        layout = self.parent_layout
        self.emit_docstring(
            [
                f"Accessors for ``{self.struct_anno}``: {layout.byte_size} bytes, aligned to {layout.align}.",
                "",
                "Nothing here checks bounds or alignment. ``seg`` must span at least",
                "``sizeof()`` bytes, or ``(index + 1) * sizeof()`` bytes for the ``*_at``",
                "accessors; anything else is undefined behaviour.",
            ]
        )
        self.decr_align()

    def emit_layout_handle_accessor(self) -> None:
        self._check_open()
        handle = self._layout_handle()
        self._emit_method(f"layout() -> {LAYOUT_MODULE}.LayoutNode", [f"return {handle.call_string()}"])

    def emit_field_access_handle_accessor(self, field: FieldBinding) -> FieldBinding:
        field = self._record(field)
        handle = self._access_handle(field)
        self._emit_method(
            f"{field.python_name}_access() -> {RUNTIME_MODULE}.FieldAccess",
            [f"return {handle.call_string()}"],
        )
        return field

    def emit_scalar_accessors(self, field: FieldBinding) -> FieldBinding:
        if field.access_kind != VALUE:
            raise ValueError(f"{self.qualified_name}.{field.python_name}: not a value field")
        field = self._record(field)
        handle = self._access_handle(field).call_string()
        name = field.python_name
        seg = self._seg_hint()
        seg_array = self._seg_hint(self.struct_array_anno)
        value = self._value_hint(field)
        self._emit_method(f"{name}_get(seg: {seg}) -> {value}", [f"return {handle}.get(seg)"])
        self._emit_method(f"{name}_set(seg: {seg}, x: {value}) -> None", [f"{handle}.set(seg, x)"])
        self._emit_method(
            f"{name}_get_at(seg: {seg_array}, index: int) -> {value}",
            [f"return {handle}.get(seg, index)"],
        )
        self._emit_method(
            f"{name}_set_at(seg: {seg_array}, index: int, x: {value}) -> None",
            [f"{handle}.set(seg, x, index)"],
        )
        return field

    def emit_sequence_accessors(self, field: FieldBinding) -> FieldBinding:
        if field.access_kind != SEQUENCE:
            raise ValueError(f"{self.qualified_name}.{field.python_name}: not a scalar array field")
        field = self._record(field)
        handle = self._access_handle(field).call_string()
        name = field.python_name
        seg = self._seg_hint()
        value = self._value_hint(field)
        self._emit_method(
            f"{name}_get(seg: {seg}, index: int) -> {value}",
            [f"return {handle}.get_element(seg, index)"],
        )
        self._emit_method(
            f"{name}_set(seg: {seg}, index: int, x: {value}) -> None",
            [f"{handle}.set_element(seg, index, x)"],
        )
        return field

    def emit_slice_accessor(self, field: FieldBinding) -> FieldBinding:
        field = self._record(field)
        offset = offset_of(self.parent_layout, field.native_name)
        size = field.layout.byte_size
        anno = self.annotation_writer.c_annotation(field.type_ref)
        self._emit_method(
            f"{field.python_name}_slice(seg: {self._seg_hint()}) -> {_hint('memoryview', anno)}",
            [f"return {RUNTIME_MODULE}.non_closeable_slice(seg, {offset}, {size})"],
        )
        return field

    def class_end(self) -> SourceBuilder:
        self._check_open()
        self.check_close_order(self)
        layout = self._layout_handle().call_string()
        self._emit_sizeof(layout)
        self._emit_allocate(layout)
        self._emit_arena_allocate(layout)
        self._emit_allocate_array(layout)
        self._emit_arena_allocate_array(layout)
        pointer = self.constants.pointer_layout(self.pointer_size).call_string()
        self._emit_allocate_pointer(pointer)
        self._emit_arena_allocate_pointer(pointer)
        self._emit_as_restricted(layout)
        self._closed = True
        if self._nested:
            self.decr_align()
        self.builder_closed(self)
        self.log(f"closed with {len(self.fields)} fields")
        return self.prev

    def _emit_sizeof(self, layout: str) -> None:
        self._emit_method("sizeof() -> int", [f"return {layout}.byte_size"])

    def _emit_allocate(self, layout: str) -> None:
        self._emit_method(
            f"allocate() -> {_hint('bytearray', self.struct_anno)}",
            [f"return {RUNTIME_MODULE}.allocate({layout})"],
        )

    def _emit_arena_allocate(self, layout: str) -> None:
        self._emit_method(
            f"allocate_in(arena: {RUNTIME_MODULE}.Arena) -> {_hint('memoryview', self.struct_anno)}",
            [f"return arena.allocate({layout})"],
        )

    def _emit_allocate_array(self, layout: str) -> None:
        self._emit_method(
            f"allocate_array(length: int) -> {_hint('bytearray', self.struct_array_anno)}",
            [f"return {RUNTIME_MODULE}.allocate({LAYOUT_MODULE}.sequence_of({layout}, length))"],
        )

    def _emit_arena_allocate_array(self, layout: str) -> None:
        self._emit_method(
            f"allocate_array_in(arena: {RUNTIME_MODULE}.Arena, length: int) -> "
            f"{_hint('memoryview', self.struct_array_anno)}",
            [f"return arena.allocate({LAYOUT_MODULE}.sequence_of({layout}, length))"],
        )

    def _emit_allocate_pointer(self, pointer: str) -> None:
        self._emit_method(
            f"allocate_pointer_slot() -> {_hint('bytearray', self.struct_ptr_anno)}",
            [f"return {RUNTIME_MODULE}.allocate({pointer})"],
        )

    def _emit_arena_allocate_pointer(self, pointer: str) -> None:
        self._emit_method(
            f"allocate_pointer_slot_in(arena: {RUNTIME_MODULE}.Arena) -> {_hint('memoryview', self.struct_ptr_anno)}",
            [f"return arena.allocate({pointer})"],
        )

    def _emit_as_restricted(self, layout: str) -> None:
        self._emit_method(
            f"reinterpret_restricted(address: int, element_count: int = 1) -> {_hint('memoryview', self.struct_anno)}",
            [f"return {RUNTIME_MODULE}.as_array_restricted(address, {layout}, element_count)"],
            doc=[
                "Unchecked view of ``element_count`` elements at a raw ``address``.",
                "",
                "The address is not validated. It must point to live, writable memory of",
                "at least ``element_count * sizeof()`` bytes for as long as the view is used.",
            ],
        )
