from __future__ import annotations

from ..layout import DEFAULT_POINTER_SIZE
from .annotations import AnnotationWriter
from .constants import LAYOUT_MODULE, RUNTIME_MODULE, ConstantRegistry
from .names import NameRegistry
from .source_builder import SourceBuilder
from .writer import SourceWriter


MODULE_RESERVED = ("Annotated", LAYOUT_MODULE, RUNTIME_MODULE, "annotations")


class ModuleBuilder(SourceBuilder):
    """Top-level session: owns the output buffer and the module naming scope."""

    def __init__(
        self,
        module_name: str = "bindings",
        pointer_size: int = DEFAULT_POINTER_SIZE,
        constants: ConstantRegistry | None = None,
        annotation_writer: AnnotationWriter | None = None,
        source: str | None = None,
        log=None,
        names_log=None,
        constants_log=None,
    ) -> None:
        names = NameRegistry(log=names_log)
        names.reserve(*MODULE_RESERVED)
        if constants is None:
            constants = ConstantRegistry(names, log=constants_log)
        super().__init__(module_name, "", constants, names, log=log)
        self.module_name = module_name
        self.source = source
        self.annotation_writer = annotation_writer or AnnotationWriter()
        self._pointer_size = pointer_size
        self._writer = SourceWriter()
        self._open: list[SourceBuilder] = []
        self._roots: list[str] = []
        self._built = False

    def append(self, text) -> None:
        self._writer.append(text)

    def indent(self) -> None:
        self._writer.indent()

    def incr_align(self) -> None:
        self._writer.incr_align()

    def decr_align(self) -> None:
        self._writer.decr_align()

    @property
    def pointer_size(self) -> int:
        return self._pointer_size

    @property
    def roots(self) -> list[str]:
        return list(self._roots)

    def builder_opened(self, builder: SourceBuilder) -> None:
        if not self._open:
            self.append("\n\n")
            self._roots.append(builder.class_name)
        self._open.append(builder)

    def check_close_order(self, builder: SourceBuilder) -> None:
        if not self._open or self._open[-1] is not builder:
            raise ValueError(f"binding {builder.qualified_name} closed out of order")

    def builder_closed(self, builder: SourceBuilder) -> None:
        self.check_close_order(builder)
        self._open.pop()

    def module_begin(self) -> None:
        origin = f" from {self.source}" if self.source else ""
        self.append(f"# Generated by structbind{origin}. Do not edit.\n")
        self.emit_docstring(
            [
                f"Native struct bindings: {self.module_name}.",
                "",
                "Every accessor reads or writes a caller-supplied segment (bytearray,",
                "memoryview or any writable buffer) at a fixed offset. Bounds and alignment",
                "are never checked: passing a segment that is too small or laid out",
                "differently is undefined behaviour, not an error.",
            ]
        )
        self.emit_lines(
            [
                "from __future__ import annotations",
                "",
                "from typing import Annotated",
                "",
                f"from structbind import layout as {LAYOUT_MODULE}",
                f"from structbind import runtime as {RUNTIME_MODULE}",
            ]
        )

    def build(self) -> str:
        if self._open:
            raise ValueError(f"binding {self._open[-1].qualified_name} was never closed")
        if self._built:
            raise ValueError("module already built")
        self._built = True
        if len(self.constants):
            self.append("\n\n")
            self.constants.emit(self)
        return self._writer.text()
