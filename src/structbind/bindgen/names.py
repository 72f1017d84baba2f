from __future__ import annotations

import keyword
from typing import Iterable

from ..analysis.decl_utils import _sanitize_identifier
from ..errors import NameCollisionExhausted


DEFAULT_SUFFIX_LIMIT = 1 << 16


def python_identifier(name: str) -> str:
    out = _sanitize_identifier(name or "")
    if not out:
        return "_"
    if keyword.iskeyword(out):
        out += "_"
    # A leading double underscore would be name-mangled inside a class body.
    if out.startswith("__"):
        out = "_" + out.lstrip("_")
    return out


class NameRegistry:
    """Hands out identifiers that are unique within one naming scope.

    The first request for a name returns it unchanged; repeated requests get
    ``<sep>1``, ``<sep>2``... appended, in call order, so the same sequence of
    requests always yields the same names.
    """

    def __init__(self, separator: str = "_", limit: int = DEFAULT_SUFFIX_LIMIT, log=None) -> None:
        self.separator = separator
        self.limit = limit
        self._log = log
        self._issued: set[str] = set()
        self._next_suffix: dict[str, int] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._issued

    def __len__(self) -> int:
        return len(self._issued)

    def reserve(self, *names: str) -> None:
        self._issued.update(names)

    def unique_name(self, requested: str) -> str:
        if requested not in self._issued:
            self._issued.add(requested)
            return requested
        suffix = self._next_suffix.get(requested, 1)
        while suffix <= self.limit:
            candidate = f"{requested}{self.separator}{suffix}"
            suffix += 1
            if candidate not in self._issued:
                self._next_suffix[requested] = suffix
                self._issued.add(candidate)
                if self._log is not None:
                    self._log(f"renamed {requested!r} to {candidate!r}")
                return candidate
        raise NameCollisionExhausted(f"no free name for {requested!r} after {self.limit} suffixes")

    def unique_prefix(self, requested: str, suffixes: Iterable[str]) -> str:
        """Pick a prefix whose ``<prefix>_<suffix>`` names are all free, and claim them.

        The prefix itself is not claimed, so a nested class may still use it.
        """
        suffixes = tuple(suffixes)
        for index in range(self.limit + 1):
            candidate = requested if index == 0 else f"{requested}{self.separator}{index}"
            derived = [f"{candidate}_{suffix}" for suffix in suffixes]
            if any(name in self._issued for name in derived):
                continue
            self._issued.update(derived)
            if index and self._log is not None:
                self._log(f"renamed {requested!r} to {candidate!r}")
            return candidate
        raise NameCollisionExhausted(f"no free name for {requested!r} after {self.limit} suffixes")

    def child(self) -> "NameRegistry":
        return NameRegistry(separator=self.separator, limit=self.limit, log=self._log)
