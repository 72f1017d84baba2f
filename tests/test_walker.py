import os
import struct
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from structbind.analysis.decl_types import (  # noqa: E402
    CType,
    EnumDecl,
    MemberInfo,
    StructDecl,
    TypedefDecl,
    TypeRegistry,
)
from structbind.bindgen.walker import BindingWalker, render_bindings  # noqa: E402
from structbind.layout import ScalarType, offset_of  # noqa: E402


def base(name, size, encoding="signed"):
    return CType(kind="named", name=name, ref_kind="base", size=size, encoding=encoding)


INT = base("int", 4)
CHAR = base("char", 1, "char")
DOUBLE = base("double", 8, "float")
U16 = base("unsigned short", 2, "unsigned")


def named(kind, name):
    return CType(kind="named", name=name, ref_kind=kind)


def member(name, type_ref, offset, bit_size=None):
    return MemberInfo(name=name, type_ref=type_ref, offset=offset, bit_size=bit_size, bit_offset=None)


def load(text):
    namespace = {"__name__": "generated_bindings"}
    exec(compile(text, "<generated>", "exec"), namespace)
    return namespace


def sample_registry() -> TypeRegistry:
    reg = TypeRegistry()

    reg.enums["state_e"] = EnumDecl(name="state_e", size=4)
    reg.typedefs["pid_t"] = TypedefDecl(name="pid_t", target=INT)

    reg.structs[("struct", "vec")] = StructDecl(
        kind="struct",
        name="vec",
        size=8,
        members=[member("x", INT, 0), member("y", INT, 4)],
    )
    reg.structs[("union", "proc_u")] = StructDecl(
        kind="union",
        name="proc_u",
        size=8,
        members=[member("d", DOUBLE, 0), member("raw", CType(kind="array", target=CHAR, count=8), 0)],
        name_origin="member",
    )
    reg.structs[("struct", "proc")] = StructDecl(
        kind="struct",
        name="proc",
        size=72,
        members=[
            member("p_pid", named("typedef", "pid_t"), 0),
            member("p_flags", U16, 4),
            member("p_state", named("enum", "state_e"), 8),
            member("p_self", CType(kind="pointer", target=named("struct", "proc")), 16),
            member("p_pos", named("struct", "vec"), 24),
            member("p_vel", named("struct", "vec"), 32),
            member("u", named("union", "proc_u"), 40),
            member("p_comm", CType(kind="array", target=CHAR, count=8), 48),
            member("p_path", CType(kind="array", target=named("struct", "vec"), count=2), 56),
        ],
    )
    reg.typedefs["proc_t"] = TypedefDecl(name="proc_t", target=named("struct", "proc"))

    reg.structs[("struct", "packed")] = StructDecl(
        kind="struct",
        name="packed",
        size=12,
        members=[
            member("tag", CHAR, 0),
            member("value", INT, 1),
            member("bits", INT, 5, bit_size=3),
            member("tail", CHAR, 10),
        ],
    )
    reg.structs[("struct", "opaque_s")] = StructDecl(kind="struct", name="opaque_s", size=None, members=[], opaque=True)
    return reg


class WalkerLayoutTests(unittest.TestCase):
    def setUp(self) -> None:
        self.reg = sample_registry()
        self.walker = BindingWalker(self.reg)

    def test_base_types(self) -> None:
        self.assertEqual(self.walker.layout_for_type(INT).element_type, ScalarType.INT32)
        self.assertEqual(self.walker.layout_for_type(U16).element_type, ScalarType.INT16)
        self.assertEqual(self.walker.layout_for_type(DOUBLE).element_type, ScalarType.FLOAT64)
        self.assertEqual(self.walker.layout_for_type(named("typedef", "pid_t")).element_type, ScalarType.INT32)
        self.assertEqual(self.walker.layout_for_type(named("enum", "state_e")).byte_size, 4)
        wide = self.walker.layout_for_type(base("__int128", 16))
        self.assertEqual((wide.byte_size, wide.align), (16, 16))

    def test_pointers_follow_pointer_size(self) -> None:
        walker = BindingWalker(self.reg, pointer_size=4)
        layout = walker.layout_for_type(CType(kind="pointer", target=INT))
        self.assertEqual((layout.byte_size, layout.element_type), (4, ScalarType.POINTER))

    def test_void_and_opaque_have_no_layout(self) -> None:
        self.assertIsNone(self.walker.layout_for_type(base("void", None)))
        self.assertIsNone(self.walker.layout_for_type(named("struct", "opaque_s")))
        self.assertIsNone(self.walker.layout_for_type(named("struct", "missing")))

    def test_flexible_array(self) -> None:
        layout = self.walker.layout_for_type(CType(kind="array", target=INT, count=None))
        self.assertEqual((layout.byte_size, layout.length), (0, 0))

    def test_struct_matches_declared_offsets(self) -> None:
        layout = self.walker.layout_for_struct(self.reg.structs[("struct", "proc")])
        self.assertEqual(layout.byte_size, 72)
        for m in self.reg.structs[("struct", "proc")].members:
            self.assertEqual(offset_of(layout, m.name), m.offset, m.name)
        self.assertIs(layout, self.walker.layout_for_struct(self.reg.structs[("struct", "proc")]))

    def test_misaligned_members_and_bitfields(self) -> None:
        messages: list[str] = []
        walker = BindingWalker(self.reg, log=messages.append)
        layout = walker.layout_for_struct(self.reg.structs[("struct", "packed")])
        self.assertEqual(offset_of(layout, "value"), 1)
        self.assertEqual(offset_of(layout, "tail"), 10)
        self.assertNotIn("bits", layout.member_names())
        self.assertEqual(layout.byte_size, 12)
        self.assertTrue(any("bitfield" in message for message in messages))
        self.assertTrue(any("packing" in message for message in messages))


class RenderBindingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.text = render_bindings(sample_registry(), [named("typedef", "proc_t")], module_name="procs")
        self.ns = load(self.text)

    def test_typedef_root_names_the_class(self) -> None:
        self.assertIn("proc_t", self.ns)
        self.assertEqual(self.ns["proc_t"].sizeof(), 72)

    def test_nested_classes(self) -> None:
        proc = self.ns["proc_t"]
        self.assertEqual(proc.vec.sizeof(), 8)
        self.assertEqual(proc.vec_1.sizeof(), 8)
        # Anonymous aggregates are named after their member.
        self.assertEqual(proc.u.sizeof(), 8)
        self.assertFalse(hasattr(proc, "p_path_get"))
        self.assertEqual(len(proc.p_path_slice(proc.allocate())), 16)

    def test_accessors_work_end_to_end(self) -> None:
        proc = self.ns["proc_t"]
        seg = proc.allocate()
        proc.p_pid_set(seg, 1234)
        proc.p_flags_set(seg, -2)
        proc.p_state_set(seg, 3)
        proc.p_self_set(seg, 0x1000)
        proc.p_comm_set(seg, 1, ord("x"))
        proc.vec_1.y_set(proc.p_vel_slice(seg), 9)
        proc.u.d_set(proc.u_slice(seg), 0.5)
        self.assertEqual(proc.p_pid_get(seg), 1234)
        self.assertEqual(proc.p_flags_get(seg), -2)
        self.assertEqual(proc.p_state_get(seg), 3)
        self.assertEqual(proc.p_self_get(seg), 0x1000)
        self.assertEqual(proc.p_comm_get(seg, 1), ord("x"))
        self.assertEqual(struct.unpack_from("=i", seg, 36)[0], 9)
        self.assertEqual(struct.unpack_from("=d", seg, 40)[0], 0.5)
        self.assertEqual(bytes(proc.p_comm_slice(seg)), b"\x00x" + b"\x00" * 6)

    def test_annotations_describe_c_types(self) -> None:
        self.assertIn("Annotated[int, 'pid_t']", self.text)
        self.assertIn("'struct proc *'", self.text)

    def test_several_roots_share_one_module(self) -> None:
        text = render_bindings(sample_registry(), [named("struct", "vec"), named("struct", "vec")])
        ns = load(text)
        self.assertEqual(ns["vec"].sizeof(), 8)
        self.assertEqual(ns["vec_1"].sizeof(), 8)

    def test_colliding_member_names_get_distinct_accessors(self) -> None:
        reg = TypeRegistry()
        reg.structs[("struct", "s")] = StructDecl(
            kind="struct",
            name="s",
            size=16,
            members=[member("__x", INT, 0), member("_x", INT, 4), member("class", INT, 8), member("class_", INT, 12)],
        )
        s = load(render_bindings(reg, [named("struct", "s")]))["s"]
        seg = s.allocate()
        s._x_set(seg, 1)
        s._x_1_set(seg, 2)
        s.class__set(seg, 3)
        s.class__1_set(seg, 4)
        self.assertEqual([struct.unpack_from("=i", seg, offset)[0] for offset in (0, 4, 8, 12)], [1, 2, 3, 4])
        self.assertEqual(s._x_access().offset, 0)
        self.assertEqual(s._x_1_access().offset, 4)

    def test_nested_class_names_avoid_accessor_names(self) -> None:
        reg = TypeRegistry()
        reg.structs[("struct", "o_a_get")] = StructDecl(
            kind="struct", name="o_a_get", size=4, members=[member("z", INT, 0)], name_origin="member"
        )
        reg.structs[("struct", "o")] = StructDecl(
            kind="struct",
            name="o",
            size=8,
            members=[member("a", INT, 0), member("a_get", named("struct", "o_a_get"), 4)],
        )
        o = load(render_bindings(reg, [named("struct", "o")]))["o"]
        seg = o.allocate()
        o.a_set(seg, 11)
        self.assertEqual(o.a_get(seg), 11)
        o.a_get_1.z_set(o.a_get_slice(seg), 12)
        self.assertEqual(struct.unpack_from("=i", seg, 4)[0], 12)

    def test_accessor_names_avoid_nested_class_names(self) -> None:
        reg = TypeRegistry()
        reg.structs[("struct", "p_a_get")] = StructDecl(
            kind="struct", name="p_a_get", size=4, members=[member("z", INT, 0)], name_origin="member"
        )
        reg.structs[("struct", "p")] = StructDecl(
            kind="struct",
            name="p",
            size=8,
            members=[member("a_get", named("struct", "p_a_get"), 0), member("a", INT, 4)],
        )
        p = load(render_bindings(reg, [named("struct", "p")]))["p"]
        seg = p.allocate()
        p.a_get.z_set(p.a_get_slice(seg), 5)
        p.a_1_set(seg, 6)
        self.assertEqual(p.a_1_get(seg), 6)
        self.assertEqual(struct.unpack_from("=ii", seg, 0), (5, 6))
        self.assertFalse(hasattr(p, "a_set"))

    def test_non_aggregate_root(self) -> None:
        with self.assertRaises(ValueError):
            render_bindings(sample_registry(), [INT])
        with self.assertRaises(ValueError):
            render_bindings(sample_registry(), [named("struct", "opaque_s")])


if __name__ == "__main__":
    unittest.main()
