import argparse
from pathlib import Path

from .analysis.dwarf import LOG_CHANNELS, emit_bindings, print_types


def _comma_set(value: str) -> set[str]:
    return {item.strip() for item in value.split(",") if item.strip()}


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate Python accessors for C structs described by DWARF data.")
    parser.add_argument("path", help="Path to the ELF/Mach-O file containing DWARF sections.")
    parser.add_argument(
        "--arch",
        help="Select a specific Mach-O slice (e.g. x86_64, arm64, arm64e).",
        default=None,
    )
    parser.add_argument(
        "--filter",
        help="Only list types whose name contains this substring (case-insensitive).",
        default=None,
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Limit number of type names listed (default: 100, use 0 to suppress).",
    )
    parser.add_argument(
        "--type",
        dest="type_names",
        action="append",
        default=[],
        help="Generate bindings for the given struct, union or typedef name. Repeat for several roots.",
    )
    parser.add_argument(
        "--module-name",
        default="bindings",
        help="Name recorded in the generated module docstring (default: bindings).",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=0,
        help="Pointer depth up to which pointed-to structs are expanded (default: 0).",
    )
    parser.add_argument(
        "--verbose",
        default="",
        help="Comma-separated list of logs to enable (layout, names, constants, dwarf-null-members, or 'all').",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write the generated module to this path instead of stdout.",
    )
    args = parser.parse_args()

    verbose = _comma_set(args.verbose)
    unknown = verbose - LOG_CHANNELS - {"all"}
    if unknown:
        parser.error(f"unknown --verbose channel(s): {', '.join(sorted(unknown))}")

    if args.type_names:
        output = emit_bindings(
            args.path,
            args.type_names,
            arch=args.arch,
            module_name=args.module_name,
            max_depth=args.max_depth,
            verbose=verbose,
        )
        if args.output:
            Path(args.output).write_text(output, encoding="utf-8")
        else:
            print(output, end="")
        return

    print_types(args.path, arch=args.arch, name_filter=args.filter, limit=args.limit)
