from __future__ import annotations

import sys
from typing import Iterator

from elftools.dwarf.dwarf_expr import DWARFExprParser

from .decl_types import CType, EnumDecl, MemberInfo, StructDecl, TypedefDecl, TypeRegistry
from .decl_utils import _attr_int, _decode_attr, _sanitize_identifier


STRUCT_TAGS = {
    "DW_TAG_structure_type",
    "DW_TAG_union_type",
    "DW_TAG_class_type",
}
ENUM_TAG = "DW_TAG_enumeration_type"
TYPEDEF_TAG = "DW_TAG_typedef"
BASE_TAG = "DW_TAG_base_type"
POINTER_TAG = "DW_TAG_pointer_type"
REFERENCE_TAG = "DW_TAG_reference_type"
RV_REFERENCE_TAG = "DW_TAG_rvalue_reference_type"
ARRAY_TAG = "DW_TAG_array_type"
CONST_TAG = "DW_TAG_const_type"
VOLATILE_TAG = "DW_TAG_volatile_type"
RESTRICT_TAG = "DW_TAG_restrict_type"
ATOMIC_TAG = "DW_TAG_atomic_type"
UNSPEC_TAG = "DW_TAG_unspecified_type"
SUBROUTINE_TAG = "DW_TAG_subroutine_type"

INDEX_TAGS = STRUCT_TAGS | {ENUM_TAG, TYPEDEF_TAG, BASE_TAG}

# DW_ATE_* values from the DWARF standard.
BASE_ENCODINGS = {
    0x02: "bool",
    0x04: "float",
    0x05: "signed",
    0x06: "char",
    0x07: "unsigned",
    0x08: "char",
    0x10: "unsigned",
}


class TypeBuilder:
    def __init__(self, dwarfinfo, max_depth: int = 0, verbose: set[str] | None = None) -> None:
        self.dwarfinfo = dwarfinfo
        self.max_depth = max_depth
        self._verbose = verbose or set()
        self.registry = TypeRegistry()
        self._expr_parser: DWARFExprParser | None = None
        self._best_by_name_tag, self._name_index = self._build_type_index()
        self._anon_type_counter = 0
        self._expanding: set[tuple[str, str]] = set()
        self._anon_name_overrides: dict[int, str] = {}
        self._name_owner: dict[tuple[str, str], int] = {}

    @property
    def expr_parser(self) -> DWARFExprParser:
        if self._expr_parser is None:
            self._expr_parser = DWARFExprParser(self.dwarfinfo.structs)
        return self._expr_parser

    def _log_null_member(self, struct_name: str, member_name: str, message: str) -> None:
        if "dwarf-null-members" in self._verbose or "all" in self._verbose:
            print(f"[structbind:dwarf-null-members] {struct_name}.{member_name}: {message}", file=sys.stderr)

    def _build_type_index(self):
        best_by_name_tag: dict[tuple[str, str], object] = {}
        name_index: dict[str, list[object]] = {}

        def score(die) -> int:
            score_value = 0
            decl = die.attributes.get("DW_AT_declaration")
            if decl is not None and decl.value:
                score_value -= 5
            else:
                score_value += 5
            if "DW_AT_byte_size" in die.attributes:
                score_value += 2
            if die.has_children:
                score_value += 1
            return score_value

        for cu in self.dwarfinfo.iter_CUs():
            for die in cu.iter_DIEs():
                if die.tag not in INDEX_TAGS:
                    continue
                name_attr = die.attributes.get("DW_AT_name")
                if name_attr is None:
                    continue
                name = _decode_attr(name_attr.value)
                if not name:
                    continue
                name_index.setdefault(name, []).append(die)
                key = (name, die.tag)
                current = best_by_name_tag.get(key)
                if current is None or score(die) > score(current):
                    best_by_name_tag[key] = die

        return best_by_name_tag, name_index

    def iter_type_names(self, name_filter: str | None = None) -> Iterator[tuple[str, str]]:
        """Yield ``(kind, name)`` for every named struct/union/typedef, sorted."""
        needle = name_filter.lower() if name_filter else None
        for name, tag in sorted(self._best_by_name_tag):
            if tag not in STRUCT_TAGS | {TYPEDEF_TAG}:
                continue
            if needle is not None and needle not in name.lower():
                continue
            if tag == TYPEDEF_TAG:
                kind = "typedef"
            elif tag == "DW_TAG_union_type":
                kind = "union"
            else:
                kind = "struct"
            yield kind, name

    def _canonical_die(self, die):
        name = self._die_name(die)
        if not name:
            return die
        if die.tag in STRUCT_TAGS | {ENUM_TAG}:
            key = (name, die.tag)
            return self._best_by_name_tag.get(key, die)
        return die

    def _die_name(self, die) -> str | None:
        attr = die.attributes.get("DW_AT_name")
        if attr is None:
            return None
        name = _decode_attr(attr.value)
        if not name:
            return None
        return name

    def _type_die(self, die):
        if "DW_AT_type" not in die.attributes:
            return None
        return die.get_DIE_from_attribute("DW_AT_type")

    def _anon_type_name(self, kind: str) -> str:
        self._anon_type_counter += 1
        return f"__anon_{kind}_{self._anon_type_counter}"

    def _assign_name(self, kind: str, base: str, die) -> str:
        base = _sanitize_identifier(base)
        if not base:
            base = self._anon_type_name(kind)
        key = (kind, base)
        owner = self._name_owner.get(key)
        if owner is None or owner == die.offset:
            self._name_owner[key] = die.offset
            return base
        idx = 2
        while True:
            candidate = f"{base}_{idx}"
            key = (kind, candidate)
            owner = self._name_owner.get(key)
            if owner is None or owner == die.offset:
                self._name_owner[key] = die.offset
                return candidate
            idx += 1

    def find_root_die(self, type_name: str):
        name = type_name.strip()
        for prefix in ("struct ", "union ", "enum ", "class "):
            if name.startswith(prefix):
                name = name[len(prefix):].strip()
                break
        candidates = self._name_index.get(name)
        if not candidates:
            raise ValueError(f"Type '{type_name}' not found in DWARF.")

        if name.endswith("_t"):
            typedefs = [die for die in candidates if die.tag == TYPEDEF_TAG]
            if typedefs:
                return self._best_by_name_tag.get((name, TYPEDEF_TAG), typedefs[0])

        for preferred in (
            "DW_TAG_structure_type",
            "DW_TAG_class_type",
            "DW_TAG_union_type",
            TYPEDEF_TAG,
            ENUM_TAG,
            BASE_TAG,
        ):
            for die in candidates:
                if die.tag == preferred:
                    return self._best_by_name_tag.get((name, preferred), die)

        return candidates[0]

    def build_from_root(self, root_die) -> CType:
        return self.build_type_ref(root_die, depth=0)

    def build_type_ref(self, die, depth: int, suggested_name: str | None = None) -> CType:
        if die is None:
            return CType(kind="named", name="void", ref_kind="base")

        die = self._canonical_die(die)
        tag = die.tag

        if tag == TYPEDEF_TAG:
            name = self._die_name(die)
            target_die = self._type_die(die)
            if not name:
                return self.build_type_ref(target_die, depth, suggested_name=None)
            if name not in self.registry.typedefs:
                if target_die is not None and target_die.tag in STRUCT_TAGS | {ENUM_TAG}:
                    if self._die_name(target_die) is None:
                        self._anon_name_overrides[target_die.offset] = name
                if target_die is None:
                    target_ref = CType(kind="named", name="void", ref_kind="base")
                else:
                    target_ref = self.build_type_ref(target_die, depth, suggested_name=None)
                self.registry.typedefs[name] = TypedefDecl(name=name, target=target_ref)
            return CType(kind="named", name=name, ref_kind="typedef")

        if tag in STRUCT_TAGS:
            return self._build_struct_union(die, depth, suggested_name=suggested_name)

        if tag == ENUM_TAG:
            return self._build_enum(die, depth, suggested_name=suggested_name)

        if tag == BASE_TAG:
            name = self._die_name(die) or "uint8_t"
            size = _attr_int(die.attributes.get("DW_AT_byte_size"))
            encoding = BASE_ENCODINGS.get(_attr_int(die.attributes.get("DW_AT_encoding")), "unsigned")
            return CType(kind="named", name=name, ref_kind="base", size=size, encoding=encoding)

        if tag in {POINTER_TAG, REFERENCE_TAG, RV_REFERENCE_TAG}:
            target = self._type_die(die)
            if target is not None:
                target_ref = self.build_type_ref(target, depth + 1, suggested_name=None)
            else:
                target_ref = CType(kind="named", name="void", ref_kind="base")
            return CType(kind="pointer", target=target_ref)

        if tag == ARRAY_TAG:
            return self._build_array(die, depth, suggested_name=suggested_name)

        if tag in {CONST_TAG, VOLATILE_TAG, RESTRICT_TAG, ATOMIC_TAG}:
            target = self._type_die(die)
            if target is not None:
                target_ref = self.build_type_ref(target, depth, suggested_name=suggested_name)
            else:
                target_ref = CType(kind="named", name="void", ref_kind="base")
            qualifier = {
                CONST_TAG: "const",
                VOLATILE_TAG: "volatile",
                RESTRICT_TAG: "restrict",
                ATOMIC_TAG: "_Atomic",
            }[tag]
            return self._apply_qualifier(target_ref, qualifier)

        if tag not in {UNSPEC_TAG, SUBROUTINE_TAG}:
            # Vendor wrapper types (e.g. ptrauth) behave like transparent qualifiers.
            target = self._type_die(die)
            if target is not None and target is not die:
                return self.build_type_ref(target, depth, suggested_name=None)

        return CType(kind="named", name="void", ref_kind="base")

    def _apply_qualifier(self, type_ref: CType, qualifier: str) -> CType:
        if type_ref.kind == "named":
            if qualifier not in type_ref.qualifiers:
                type_ref.qualifiers.insert(0, qualifier)
            return type_ref
        if type_ref.kind == "pointer" and qualifier in {"_Atomic", "restrict"}:
            if qualifier not in type_ref.qualifiers:
                type_ref.qualifiers.insert(0, qualifier)
            return type_ref
        if type_ref.kind in {"pointer", "array"} and type_ref.target is not None:
            type_ref.target = self._apply_qualifier(type_ref.target, qualifier)
        return type_ref

    def _build_array(self, die, depth: int, suggested_name: str | None) -> CType:
        element_die = self._type_die(die)
        if element_die is None:
            element_ref = CType(kind="named", name="uint8_t", ref_kind="base", size=1, encoding="unsigned")
        else:
            element_ref = self.build_type_ref(element_die, depth, suggested_name=suggested_name)
        counts: list[int | None] = []
        for child in die.iter_children():
            if child.tag != "DW_TAG_subrange_type":
                continue
            count = _attr_int(child.attributes.get("DW_AT_count"))
            if count is None:
                upper = _attr_int(child.attributes.get("DW_AT_upper_bound"))
                if upper is not None and upper >= 0:
                    count = upper + 1
            counts.append(count)
        if not counts:
            return CType(kind="array", target=element_ref, count=None)
        current = element_ref
        for count in reversed(counts):
            current = CType(kind="array", target=current, count=count)
        return current

    def _build_struct_union(self, die, depth: int, suggested_name: str | None) -> CType:
        kind = "union" if die.tag == "DW_TAG_union_type" else "struct"
        name_origin = "dwarf"
        name = self._die_name(die)
        if not name:
            override = self._anon_name_overrides.get(die.offset)
            if override:
                name, name_origin = override, "typedef"
            elif suggested_name:
                name, name_origin = suggested_name, "member"
            else:
                name, name_origin = self._anon_type_name(kind), "anon"
        name = self._assign_name(kind, name, die)
        key = (kind, name)

        if key in self._expanding:
            return CType(kind="named", name=name, ref_kind=kind)

        existing = self.registry.structs.get(key)
        if existing is not None and (not existing.opaque or depth > self.max_depth):
            return CType(kind="named", name=name, ref_kind=kind)

        size = _attr_int(die.attributes.get("DW_AT_byte_size"))
        if depth > self.max_depth:
            self.registry.structs[key] = StructDecl(
                kind=kind,
                name=name,
                size=size,
                members=[],
                opaque=True,
                name_origin=name_origin,
            )
            return CType(kind="named", name=name, ref_kind=kind)

        self._expanding.add(key)
        decl = StructDecl(kind=kind, name=name, size=size, members=[], name_origin=name_origin)
        self.registry.structs[key] = decl

        member_names: dict[str, int] = {}
        for child in die.iter_children():
            if child.tag != "DW_TAG_member":
                continue
            if _attr_int(child.attributes.get("DW_AT_artificial")):
                continue
            raw_name = self._die_name(child)
            if not raw_name:
                raw_name = self._anon_type_name("member")
            raw_name = _sanitize_identifier(raw_name)
            count = member_names.get(raw_name, 0)
            member_names[raw_name] = count + 1
            if count:
                raw_name = f"{raw_name}_{count}"

            member_type_die = self._type_die(child)
            if member_type_die is None:
                member_size = _attr_int(child.attributes.get("DW_AT_byte_size")) or 1
                self._log_null_member(name, raw_name, f"missing DW_AT_type, using opaque size {member_size} bytes")
                member_type_ref = self._opaque_type_for_size(member_size)
            else:
                suggested = None
                if member_type_die.tag in STRUCT_TAGS | {ENUM_TAG} and self._die_name(member_type_die) is None:
                    suggested = f"{name}_{raw_name}"
                member_type_ref = self.build_type_ref(member_type_die, depth, suggested_name=suggested)
                member_size = _attr_int(child.attributes.get("DW_AT_byte_size"))
                if self._is_void_type(member_type_ref):
                    if member_size is None:
                        self._log_null_member(name, raw_name, "type resolved to void, member has no size")
                    else:
                        self._log_null_member(
                            name, raw_name, f"type resolved to void, using opaque size {member_size} bytes"
                        )
                        member_type_ref = self._opaque_type_for_size(member_size)

            bit_offset = _attr_int(child.attributes.get("DW_AT_data_bit_offset"))
            if bit_offset is None:
                bit_offset = _attr_int(child.attributes.get("DW_AT_bit_offset"))
            alignment = _attr_int(child.attributes.get("DW_AT_alignment"))
            if alignment is not None and alignment <= 1:
                alignment = None

            decl.members.append(
                MemberInfo(
                    name=raw_name,
                    type_ref=member_type_ref,
                    offset=self._member_offset(child, kind),
                    bit_size=_attr_int(child.attributes.get("DW_AT_bit_size")),
                    bit_offset=bit_offset,
                    alignment=alignment,
                )
            )

        self._expanding.remove(key)
        return CType(kind="named", name=name, ref_kind=kind)

    def _build_enum(self, die, depth: int, suggested_name: str | None) -> CType:
        name = self._die_name(die)
        if not name:
            name = self._anon_name_overrides.get(die.offset) or suggested_name or self._anon_type_name("enum")
        name = self._assign_name("enum", name, die)

        existing = self.registry.enums.get(name)
        if existing is not None:
            return CType(kind="named", name=name, ref_kind="enum")

        underlying: str | None = None
        target = self._type_die(die)
        if target is not None:
            target_ref = self.build_type_ref(target, depth, suggested_name=None)
            if target_ref.kind == "named" and target_ref.ref_kind == "base":
                underlying = target_ref.name
        self.registry.enums[name] = EnumDecl(
            name=name,
            size=_attr_int(die.attributes.get("DW_AT_byte_size")),
            opaque=_attr_int(die.attributes.get("DW_AT_declaration")) is not None,
            underlying=underlying,
        )
        return CType(kind="named", name=name, ref_kind="enum")

    def _is_void_type(self, type_ref: CType) -> bool:
        return type_ref.kind == "named" and type_ref.ref_kind == "base" and (type_ref.name or "") == "void"

    def _opaque_type_for_size(self, size: int) -> CType:
        if size in {1, 2, 4, 8}:
            return CType(kind="named", name=f"uint{size * 8}_t", ref_kind="base", size=size, encoding="unsigned")
        return CType(
            kind="array",
            target=CType(kind="named", name="uint8_t", ref_kind="base", size=1, encoding="unsigned"),
            count=size,
        )

    def _member_offset(self, member_die, parent_kind: str) -> int | None:
        attr = member_die.attributes.get("DW_AT_data_member_location")
        if attr is None:
            if parent_kind == "union":
                return 0
            return None
        value = attr.value
        if isinstance(value, int):
            return value
        if isinstance(value, (bytes, list)):
            ops = self.expr_parser.parse_expr(value)
            if len(ops) == 1 and ops[0].op_name in {"DW_OP_plus_uconst", "DW_OP_constu", "DW_OP_consts"}:
                return int(ops[0].args[0])
        return None
