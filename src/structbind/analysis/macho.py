from __future__ import annotations

from dataclasses import dataclass
import io

from elftools.dwarf.dwarfinfo import DebugSectionDescriptor, DWARFInfo, DwarfConfig
from macholib import mach_o
from macholib.MachO import MachO


# Mach-O section name -> DWARFInfo keyword argument.
DWARF_SECTIONS = {
    "__debug_info": "debug_info_sec",
    "__debug_aranges": "debug_aranges_sec",
    "__debug_abbrev": "debug_abbrev_sec",
    "__debug_frame": "debug_frame_sec",
    "__eh_frame": "eh_frame_sec",
    "__debug_str": "debug_str_sec",
    "__debug_loc": "debug_loc_sec",
    "__debug_ranges": "debug_ranges_sec",
    "__debug_line": "debug_line_sec",
    "__debug_pubtypes": "debug_pubtypes_sec",
    "__debug_pubnames": "debug_pubnames_sec",
    "__debug_addr": "debug_addr_sec",
    "__debug_str_offs": "debug_str_offsets_sec",
    "__debug_line_str": "debug_line_str_sec",
    "__debug_loclists": "debug_loclists_sec",
    "__debug_rnglists": "debug_rnglists_sec",
    "__debug_sup": "debug_sup_sec",
    "__gnu_debugaltlink": "gnu_debugaltlink_sec",
    "__debug_types": "debug_types_sec",
}

ARCH_SYNONYMS = {
    "x86_64": {"x86_64", "x64", "amd64", "x8664"},
    "x86": {"x86", "i386", "i686"},
    "arm64": {"arm64", "aarch64"},
    "arm64e": {"arm64e"},
    "arm": {"arm", "armv7", "armv7s"},
    "ppc": {"ppc", "powerpc"},
    "ppc64": {"ppc64", "powerpc64"},
}

DWARF_MACHINE_ARCH = {
    "x86": "x86",
    "x86_64": "x64",
    "arm": "ARM",
    "arm64": "AArch64",
    "arm64e": "AArch64",
    "ppc": "PPC",
    "ppc64": "PPC64",
}

CPU_ARCH_NAMES = {
    "x86_64": "x86_64",
    "i386": "x86",
    "arm": "arm",
    "powerpc": "ppc",
    "powerpc64": "ppc64",
}


@dataclass(frozen=True)
class SliceInfo:
    arch: str
    address_size: int
    little_endian: bool

    @property
    def machine_arch(self) -> str:
        return DWARF_MACHINE_ARCH.get(self.arch, "x64" if self.address_size == 8 else "x86")


def strip_cstr(value: bytes) -> str:
    return value.split(b"\x00", 1)[0].decode("utf-8", "replace")


def normalize_arch(value: str) -> str:
    return value.lower().replace("-", "").replace("_", "")


def arch_matches(requested: str, candidate: str) -> bool:
    if not requested:
        return False
    requested_norm = normalize_arch(requested)
    if requested_norm == normalize_arch(candidate):
        return True
    aliases = ARCH_SYNONYMS.get(candidate, set())
    return requested_norm in {normalize_arch(alias) for alias in aliases}


def slice_info(header) -> SliceInfo:
    cpu_name = mach_o.CPU_TYPE_NAMES.get(header.header.cputype, "unknown").lower()
    if cpu_name == "arm64":
        arch = "arm64e" if header.header.cpusubtype == 2 else "arm64"
    else:
        arch = CPU_ARCH_NAMES.get(cpu_name, cpu_name)
    magic = header.header.magic
    is_64 = magic in (mach_o.MH_MAGIC_64, mach_o.MH_CIGAM_64) or "64" in arch
    return SliceInfo(
        arch=arch,
        address_size=8 if is_64 else 4,
        little_endian=magic in (mach_o.MH_MAGIC, mach_o.MH_MAGIC_64),
    )


def _is_segment(load_cmd) -> bool:
    return load_cmd.cmd in (mach_o.LC_SEGMENT, mach_o.LC_SEGMENT_64)


def select_header(macho: MachO, arch: str | None):
    if not macho.headers:
        return None
    if arch:
        available = []
        for header in macho.headers:
            name = slice_info(header).arch
            available.append(name)
            if arch_matches(arch, name):
                return header
        available_str = ", ".join(sorted(set(available))) or "unknown"
        raise ValueError(f"Requested arch '{arch}' not found. Available: {available_str}.")
    for header in macho.headers:
        for load_cmd, cmd, _ in header.commands:
            if _is_segment(load_cmd) and strip_cstr(cmd.segname) == "__DWARF":
                return header
    return macho.headers[0]


def read_dwarf_sections(fileobj, header) -> dict[str, DebugSectionDescriptor]:
    sections: dict[str, DebugSectionDescriptor] = {}
    for load_cmd, _, data in header.commands:
        if not _is_segment(load_cmd):
            continue
        for section in data:
            name = strip_cstr(section.sectname)
            if name not in DWARF_SECTIONS or name in sections:
                continue
            offset = header.offset + section.offset
            fileobj.seek(offset)
            payload = fileobj.read(section.size)
            sections[name] = DebugSectionDescriptor(
                io.BytesIO(payload),
                name,
                offset,
                section.size,
                getattr(section, "addr", 0),
            )
    return sections


def dwarfinfo_from_macho(path: str, arch: str | None = None) -> DWARFInfo:
    header = select_header(MachO(path), arch)
    if header is None:
        raise ValueError(f"No Mach-O headers found in {path}.")
    info = slice_info(header)

    with open(path, "rb") as fileobj:
        sections = read_dwarf_sections(fileobj, header)
    if "__debug_info" not in sections:
        raise ValueError("Mach-O file does not contain a __debug_info section.")

    kwargs = {keyword: sections.get(name) for name, keyword in DWARF_SECTIONS.items()}
    return DWARFInfo(
        config=DwarfConfig(
            little_endian=info.little_endian,
            default_address_size=info.address_size,
            machine_arch=info.machine_arch,
        ),
        **kwargs,
    )
