from __future__ import annotations

import sys
from typing import Callable, Iterable

from elftools.elf.elffile import ELFFile

from ..bindgen.walker import render_bindings
from ..layout import DEFAULT_POINTER_SIZE
from .decl_builder import TypeBuilder
from .macho import dwarfinfo_from_macho


macho_magics = {
    b"\xfe\xed\xfa\xce",
    b"\xce\xfa\xed\xfe",
    b"\xfe\xed\xfa\xcf",
    b"\xcf\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe",
    b"\xbe\xba\xfe\xca",
}

LOG_CHANNELS = {"layout", "names", "constants", "dwarf-null-members"}


def channel_logger(verbose: set[str] | None, channel: str) -> Callable[[str], None] | None:
    """Return a stderr logger for ``channel``, or None when it is not enabled."""
    if not verbose or (channel not in verbose and "all" not in verbose):
        return None

    def log(message: str) -> None:
        print(f"[structbind:{channel}] {message}", file=sys.stderr)

    return log


def detect_container_magic(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read(4)


def monkeypatch() -> None:
    import elftools.dwarf.dwarfinfo

    if getattr(elftools.dwarf.dwarfinfo, "_structbind_strx_patch", False):
        return

    old_create_structs = elftools.dwarf.dwarfinfo.DWARFStructs._create_structs

    def _create_structs(self):
        old_create_structs(self)
        self.Dwarf_dw_form["DW_FORM_strx"] = self.the_Dwarf_uleb128
        if "DW_FORM_strx4" in self.Dwarf_dw_form:
            self.Dwarf_dw_form["DW_FORM_strx4"] = self.the_Dwarf_uint32

    elftools.dwarf.dwarfinfo.DWARFStructs._create_structs = _create_structs
    elftools.dwarf.dwarfinfo._structbind_strx_patch = True


def dwarfinfo_from_path(filename: str, arch: str | None = None):
    monkeypatch()
    magic = detect_container_magic(filename)
    if magic == b"\x7fELF":
        with open(filename, "rb") as f:
            elf = ELFFile(f)
            if not elf.has_dwarf_info():
                raise ValueError("ELF file does not contain DWARF information.")
            return elf.get_dwarf_info()
    if magic in macho_magics:
        return dwarfinfo_from_macho(filename, arch=arch)
    raise ValueError("Unsupported file format: expected ELF or Mach-O.")


def pointer_size_of(dwarfinfo) -> int:
    size = getattr(dwarfinfo.config, "default_address_size", None)
    return size if size in {4, 8} else DEFAULT_POINTER_SIZE


def print_types(filename: str, arch: str | None = None, name_filter: str | None = None, limit: int | None = None):
    if limit is None:
        limit = 100
    if limit < 0:
        raise ValueError("--limit must be >= 0")

    dwarfinfo = dwarfinfo_from_path(filename, arch=arch)
    names = list(TypeBuilder(dwarfinfo).iter_type_names(name_filter))
    counts: dict[str, int] = {}
    for kind, _ in names:
        counts[kind] = counts.get(kind, 0) + 1

    print(f"{len(names)} bindable types found in DWARF.")
    for kind in sorted(counts):
        print(f"{kind}: {counts[kind]}")

    if limit == 0:
        return

    print("Sample types:")
    for kind, name in names[:limit]:
        print(f"{kind} {name}")


def emit_bindings(
    filename: str,
    type_names: Iterable[str],
    arch: str | None = None,
    module_name: str = "bindings",
    max_depth: int = 0,
    verbose: set[str] | None = None,
) -> str:
    if max_depth < 0:
        raise ValueError("--max-depth must be >= 0")
    dwarfinfo = dwarfinfo_from_path(filename, arch=arch)
    builder = TypeBuilder(dwarfinfo, max_depth=max_depth, verbose=verbose)
    roots = [builder.build_from_root(builder.find_root_die(name)) for name in type_names]
    if not roots:
        raise ValueError("no type names given")
    return render_bindings(
        builder.registry,
        roots,
        pointer_size=pointer_size_of(dwarfinfo),
        module_name=module_name,
        source=filename,
        log=channel_logger(verbose, "layout"),
        names_log=channel_logger(verbose, "names"),
        constants_log=channel_logger(verbose, "constants"),
    )
