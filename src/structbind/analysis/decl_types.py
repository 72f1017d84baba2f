from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CType:
    kind: str
    name: str | None = None
    ref_kind: str | None = None
    target: CType | None = None
    count: int | None = None
    qualifiers: list[str] = field(default_factory=list)
    # Only set on base types.
    size: int | None = None
    encoding: str | None = None

    def needs_parens(self) -> bool:
        return self.kind == "array"


@dataclass
class MemberInfo:
    name: str
    type_ref: CType
    offset: int | None
    bit_size: int | None = None
    bit_offset: int | None = None
    alignment: int | None = None


@dataclass
class StructDecl:
    kind: str
    name: str
    size: int | None
    members: list[MemberInfo]
    opaque: bool = False
    name_origin: str = "dwarf"


@dataclass
class EnumDecl:
    name: str
    size: int | None
    opaque: bool = False
    underlying: str | None = None


@dataclass
class TypedefDecl:
    name: str
    target: CType


@dataclass
class TypeRegistry:
    structs: dict[tuple[str, str], StructDecl] = field(default_factory=dict)
    enums: dict[str, EnumDecl] = field(default_factory=dict)
    typedefs: dict[str, TypedefDecl] = field(default_factory=dict)
