from __future__ import annotations

from .constants import ConstantRegistry
from .names import NameRegistry, python_identifier


class SourceBuilder:
    """Emission surface shared by the module session and every binding class.

    Subclasses decide where text goes; nested builders forward everything to
    the builder that created them so a whole module ends up in one buffer.
    """

    def __init__(
        self,
        class_name: str,
        qualified_name: str,
        constants: ConstantRegistry,
        names: NameRegistry,
        log=None,
    ) -> None:
        self.class_name = class_name
        self.qualified_name = qualified_name
        self.constants = constants
        self._names = names
        self._log = log

    def append(self, text) -> None:
        raise NotImplementedError

    def indent(self) -> None:
        raise NotImplementedError

    def incr_align(self) -> None:
        raise NotImplementedError

    def decr_align(self) -> None:
        raise NotImplementedError

    def unique_nested_class_name(self, name: str) -> str:
        return self._names.unique_name(python_identifier(name))

    def qualify(self, name: str) -> str:
        if not self.qualified_name:
            return name
        return f"{self.qualified_name}.{name}"

    def log(self, message: str) -> None:
        if self._log is not None:
            self._log(f"{self.qualified_name or '<module>'}: {message}")

    def emit_lines(self, lines: list[str], blank_before: bool = True) -> None:
        if blank_before:
            self.append("\n")
        for line in lines:
            if not line:
                self.append("\n")
                continue
            self.indent()
            self.append(line + "\n")

    def emit_docstring(self, lines: list[str]) -> None:
        if len(lines) == 1:
            self.emit_lines([f'"""{lines[0]}"""'], blank_before=False)
            return
        body = [f'"""{lines[0]}'] + lines[1:] + ['"""']
        self.emit_lines(body, blank_before=False)

    @property
    def pointer_size(self) -> int:
        raise NotImplementedError

    def builder_opened(self, builder: "SourceBuilder") -> None:
        raise NotImplementedError

    def check_close_order(self, builder: "SourceBuilder") -> None:
        raise NotImplementedError

    def builder_closed(self, builder: "SourceBuilder") -> None:
        raise NotImplementedError
