from __future__ import annotations

from ..analysis.decl_types import CType
from ..layout import ScalarType


SCALAR_C_NAMES = {
    ScalarType.INT8: "int8_t",
    ScalarType.INT16: "int16_t",
    ScalarType.INT32: "int32_t",
    ScalarType.INT64: "int64_t",
    ScalarType.FLOAT32: "float",
    ScalarType.FLOAT64: "double",
    ScalarType.POINTER: "void *",
}


def render_type(type_ref: CType, name: str = "") -> str:
    if type_ref.kind == "named":
        base = type_ref.name or "void"
        if type_ref.ref_kind in {"struct", "union", "enum"}:
            base = f"{type_ref.ref_kind} {base}"
        if type_ref.qualifiers:
            base = " ".join(type_ref.qualifiers) + " " + base
        if name.startswith("["):
            return f"{base}{name}"
        if name:
            return f"{base} {name}"
        return base

    if type_ref.kind == "pointer":
        quals = " ".join(type_ref.qualifiers)
        if name:
            inner = f"*{name}" if not quals else f"* {quals} {name}"
        else:
            inner = "*" if not quals else f"* {quals}"
        if type_ref.target and type_ref.target.needs_parens():
            inner = f"({inner})"
        return render_type(type_ref.target or CType(kind="named", name="void", ref_kind="base"), inner)

    if type_ref.kind == "array":
        count = "" if type_ref.count is None else str(type_ref.count)
        inner = f"{name}[{count}]" if name else f"[{count}]"
        return render_type(type_ref.target or CType(kind="named", name="void", ref_kind="base"), inner)

    return "void"


def array_of(type_ref: CType) -> CType:
    return CType(kind="array", target=type_ref, count=None)


def pointer_to(type_ref: CType) -> CType:
    return CType(kind="pointer", target=type_ref)


class AnnotationWriter:
    """Produces the C type tags attached to generated signatures.

    Tags are purely descriptive; they end up inside ``typing.Annotated`` and
    never change what an accessor does.
    """

    def c_annotation(self, type_ref: CType | None) -> str:
        if type_ref is None:
            return ""
        return render_type(type_ref)

    def scalar_annotation(self, element_type: ScalarType | None) -> str:
        if element_type is None:
            return ""
        return SCALAR_C_NAMES[element_type]
