import os
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from structbind.errors import BindingError, InvalidLength, UnresolvedPath  # noqa: E402
from structbind.layout import (  # noqa: E402
    ScalarType,
    alignment,
    byte_size,
    leaf_element,
    offset_of,
    padding,
    pointer,
    scalar,
    select,
    sequence_of,
    struct_layout,
    union_layout,
)


def int32():
    return scalar(ScalarType.INT32)


class LayoutTests(unittest.TestCase):
    def test_struct_offsets_are_cumulative_and_aligned(self) -> None:
        layout = struct_layout(
            [
                ("c", scalar(ScalarType.INT8)),
                ("i", int32()),
                ("s", scalar(ScalarType.INT16)),
                ("d", scalar(ScalarType.FLOAT64)),
            ],
            name="mixed",
        )
        self.assertEqual(offset_of(layout, "c"), 0)
        self.assertEqual(offset_of(layout, "i"), 4)
        self.assertEqual(offset_of(layout, "s"), 8)
        self.assertEqual(offset_of(layout, "d"), 16)
        self.assertEqual(byte_size(layout), 24)
        self.assertEqual(alignment(layout), 8)

    def test_union_members_start_at_zero(self) -> None:
        layout = union_layout([("i", int32()), ("d", scalar(ScalarType.FLOAT64)), ("b", sequence_of(int32(), 3))])
        for name in ("i", "d", "b"):
            self.assertEqual(offset_of(layout, name), 0)
        self.assertEqual(layout.byte_size, 16)
        self.assertEqual(layout.align, 8)

    def test_array_member(self) -> None:
        layout = struct_layout([("a", int32()), ("b", sequence_of(int32(), 4))])
        self.assertEqual(layout.byte_size, 20)
        self.assertEqual(offset_of(layout, "a"), 0)
        self.assertEqual(offset_of(layout, "b"), 4)
        leaf, count = leaf_element(select(layout, "b"))
        self.assertEqual(leaf.element_type, ScalarType.INT32)
        self.assertEqual(count, 4)

    def test_nested_paths(self) -> None:
        inner = struct_layout([("x", int32()), ("y", int32())], name="vec")
        outer = struct_layout([("tag", scalar(ScalarType.INT8)), ("pos", inner), ("u", union_layout([("v", inner)]))])
        self.assertEqual(offset_of(outer, "pos.y"), 8)
        self.assertEqual(offset_of(outer, ["u", "v", "x"]), 12)
        self.assertIs(select(outer, "pos"), inner)

    def test_padding_and_explicit_size(self) -> None:
        layout = struct_layout([("a", scalar(ScalarType.INT8)), (None, padding(3)), ("b", scalar(ScalarType.INT8))], size=8)
        self.assertEqual(offset_of(layout, "b"), 4)
        self.assertEqual(layout.byte_size, 8)
        self.assertEqual(layout.member_names(), ["a", "b"])
        with self.assertRaises(ValueError):
            struct_layout([("a", scalar(ScalarType.INT64))], size=4)

    def test_with_alignment_packs_members(self) -> None:
        packed = struct_layout([("a", scalar(ScalarType.INT8)), ("b", int32().with_alignment(1))])
        self.assertEqual(offset_of(packed, "b"), 1)
        self.assertEqual(packed.byte_size, 5)
        with self.assertRaises(ValueError):
            int32().with_alignment(3)

    def test_pointer_width(self) -> None:
        self.assertEqual(pointer().byte_size, 8)
        self.assertEqual(pointer(4).byte_size, 4)
        self.assertEqual(pointer(4).element_type, ScalarType.POINTER)

    def test_invalid_lengths(self) -> None:
        with self.assertRaises(InvalidLength):
            sequence_of(int32(), -1)
        with self.assertRaises(InvalidLength):
            sequence_of(int32(), 2.5)
        with self.assertRaises(InvalidLength):
            sequence_of(int32(), sys.maxsize)
        self.assertEqual(sequence_of(int32(), 0).byte_size, 0)

    def test_unresolved_paths(self) -> None:
        layout = struct_layout([("a", int32())], name="one")
        with self.assertRaises(UnresolvedPath):
            offset_of(layout, "b")
        with self.assertRaises(UnresolvedPath):
            offset_of(layout, "a.x")
        with self.assertRaises(UnresolvedPath):
            offset_of(layout, "")
        self.assertTrue(issubclass(UnresolvedPath, BindingError))
        self.assertTrue(issubclass(BindingError, ValueError))

    def test_duplicate_member_names_rejected(self) -> None:
        with self.assertRaises(ValueError):
            struct_layout([("a", int32()), ("a", int32())])

    def test_layouts_are_hashable_values(self) -> None:
        first = struct_layout([("a", int32())], name="one")
        second = struct_layout([("a", int32())], name="one")
        self.assertEqual(first, second)
        self.assertEqual(len({first, second}), 1)


if __name__ == "__main__":
    unittest.main()
