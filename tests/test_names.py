import os
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from structbind.bindgen.names import NameRegistry, python_identifier  # noqa: E402
from structbind.errors import NameCollisionExhausted  # noqa: E402


class NameRegistryTests(unittest.TestCase):
    def test_first_request_is_unchanged(self) -> None:
        names = NameRegistry()
        self.assertEqual(names.unique_name("Vec"), "Vec")
        self.assertIn("Vec", names)

    def test_suffixes_are_deterministic(self) -> None:
        def run() -> list[str]:
            names = NameRegistry()
            return [names.unique_name(n) for n in ("Vec", "Vec", "Other", "Vec")]

        self.assertEqual(run(), ["Vec", "Vec_1", "Other", "Vec_2"])
        self.assertEqual(run(), run())

    def test_suffix_skips_taken_names(self) -> None:
        names = NameRegistry()
        names.reserve("Vec", "Vec_1")
        self.assertEqual(names.unique_name("Vec"), "Vec_2")
        self.assertEqual(len(names), 3)

    def test_exhaustion(self) -> None:
        names = NameRegistry(limit=2)
        for expected in ("a", "a_1", "a_2"):
            self.assertEqual(names.unique_name("a"), expected)
        with self.assertRaises(NameCollisionExhausted):
            names.unique_name("a")

    def test_child_scope_is_independent(self) -> None:
        names = NameRegistry()
        names.unique_name("Vec")
        child = names.child()
        self.assertEqual(child.unique_name("Vec"), "Vec")
        self.assertEqual(names.unique_name("Vec"), "Vec_1")

    def test_unique_prefix_claims_derived_names(self) -> None:
        names = NameRegistry()
        self.assertEqual(names.unique_prefix("a", ("get", "set")), "a")
        self.assertIn("a_get", names)
        self.assertNotIn("a", names)
        self.assertEqual(names.unique_prefix("a", ("get", "set")), "a_1")
        self.assertEqual(names.unique_name("a_get"), "a_get_1")

    def test_unique_prefix_skips_taken_derived_names(self) -> None:
        names = NameRegistry()
        names.reserve("x_slice")
        self.assertEqual(names.unique_prefix("x", ("get", "slice")), "x_1")
        tight = NameRegistry(limit=1)
        tight.reserve("x_get", "x_1_get")
        with self.assertRaises(NameCollisionExhausted):
            tight.unique_prefix("x", ("get",))

    def test_renames_are_logged(self) -> None:
        messages: list[str] = []
        names = NameRegistry(log=messages.append)
        names.unique_name("x")
        names.unique_name("x")
        self.assertEqual(messages, ["renamed 'x' to 'x_1'"])


class PythonIdentifierTests(unittest.TestCase):
    def test_sanitizes(self) -> None:
        self.assertEqual(python_identifier("a-b c"), "a_b_c")
        self.assertEqual(python_identifier("9lives"), "_9lives")
        self.assertEqual(python_identifier(""), "_")

    def test_keywords_and_mangling(self) -> None:
        self.assertEqual(python_identifier("class"), "class_")
        self.assertEqual(python_identifier("__anon_member_3"), "_anon_member_3")


if __name__ == "__main__":
    unittest.main()
