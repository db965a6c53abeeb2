"""
tests/test_generator.py

Unit Tests for the Thunk Generator and its marshal plan.

Native callees are ctypes callbacks from tests/native_fixtures.py, so every
thunk here really crosses a C call boundary.
"""

import ctypes
import sys
import unittest
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from src.bmi.arrays import copy_from_handle
from src.interop.config import InteropConfig
from src.interop.descriptors import (
    CharSet,
    OpaqueHandle,
    PrimitiveKind,
    Ref,
    by_reference,
    by_value,
)
from src.interop.errors import MarshalingError, SymbolNotFound, UseAfterClose
from src.interop.generator import ThunkGenerator, coerce_scalar
from src.interop.library import NativeLibrary
from src.interop.resolver import SignatureResolver
from tests.native_fixtures import ScalarLibrary, WideTextLibrary

INT = by_value(PrimitiveKind.INT32)
TEXT = by_value(PrimitiveKind.TEXT)


class GeneratorTestCase(unittest.TestCase):
    config = InteropConfig(max_string_length=32)

    def setUp(self):
        self.fake = ScalarLibrary()
        self.library = NativeLibrary.open("libscalar.so", config=self.config, loader=self.fake.loader)
        self.resolver = SignatureResolver()
        self.generator = ThunkGenerator()

    def bind(self, symbol, descriptors, returns=PrimitiveKind.NONE):
        key = self.resolver.resolve(self.library, symbol, descriptors, returns)
        return self.generator.generate(self.library, key)


class TestMarshalPlan(GeneratorTestCase):

    def test_native_layout(self):
        key = self.resolver.resolve(
            self.library,
            "anything",
            [
                by_value(PrimitiveKind.FLOAT64),
                by_reference(PrimitiveKind.INT32),
                by_reference(PrimitiveKind.INT32, 6),
                TEXT,
                by_reference(PrimitiveKind.OPAQUE),
                by_value(PrimitiveKind.OPAQUE),
                by_value(PrimitiveKind.BOOL),
            ],
            PrimitiveKind.FLOAT32,
        )
        plan = self.generator.build_plan(self.library, key)

        self.assertEqual(
            plan.argtypes,
            (
                ctypes.c_double,
                ctypes.POINTER(ctypes.c_int32),
                ctypes.POINTER(ctypes.c_int32),
                ctypes.c_char_p,
                ctypes.POINTER(ctypes.c_void_p),
                ctypes.c_void_p,
                ctypes.c_bool,
            ),
        )
        self.assertIs(plan.restype, ctypes.c_float)
        self.assertEqual([rule.writes_back for rule in plan.rules], [False, True, True, False, True, False, False])

    def test_void_return(self):
        key = self.resolver.resolve(self.library, "noop", [])
        self.assertIsNone(self.generator.build_plan(self.library, key).restype)

    def test_text_buffer_is_padded_to_max_length(self):
        """
        Test Case: Text shorter than the maximum with a space fill character.
        Expected: The callee sees the content right-padded to exactly 32 bytes.
        """
        self.library.close()
        library = NativeLibrary.open(
            "libscalar.so", config=InteropConfig(max_string_length=32, fill_char=" "), loader=self.fake.loader
        )
        key = self.resolver.resolve(library, "text_length", [TEXT], PrimitiveKind.INT32)
        thunk = self.generator.generate(library, key)

        result, outputs = thunk(["config.ini"])

        self.assertEqual(result, 32)
        self.assertEqual(self.fake.calls[-1], ("text_length", b"config.ini".ljust(32)))
        self.assertEqual(outputs, {})


class TestThunkExecution(GeneratorTestCase):

    def test_by_value_ints(self):
        thunk = self.bind("add", [INT, INT], PrimitiveKind.INT32)
        self.assertEqual(thunk([2, 40]), (42, {}))

    def test_by_value_doubles_and_bool_return(self):
        scale = self.bind("scale", [by_value(PrimitiveKind.FLOAT64)] * 2, PrimitiveKind.FLOAT64)
        self.assertEqual(scale([1.5, 4])[0], 6.0)

        positive = self.bind("is_positive", [by_value(PrimitiveKind.INT64)], PrimitiveKind.BOOL)
        self.assertIs(positive([2 ** 40])[0], True)
        self.assertIs(positive([-1])[0], False)

    def test_by_reference_outputs_are_collected(self):
        thunk = self.bind("get_current_time", [by_reference(PrimitiveKind.FLOAT64)])
        slot = Ref(0.0)

        result, outputs = thunk([slot])

        self.assertIsNone(result)
        self.assertEqual(outputs, {0: 123.0})
        # write-back into the Ref is the dispatcher's job
        self.assertEqual(slot.value, 0.0)

    def test_array_slot(self):
        thunk = self.bind("fill_array", [by_reference(PrimitiveKind.INT32, 6)])
        _, outputs = thunk([Ref([1, 2, 3])])
        self.assertEqual(outputs[0], [10, 21, 32, 3, 4, 5])

    def test_text_output(self):
        thunk = self.bind("echo", [TEXT, by_reference(PrimitiveKind.TEXT)])
        _, outputs = thunk(["hello", Ref("")])
        self.assertEqual(outputs, {1: "hello"})

    def test_text_and_opaque_returns(self):
        label = self.bind("label", [], PrimitiveKind.TEXT)
        self.assertEqual(label([])[0], "fake-model")

        numbers = self.bind("numbers", [], PrimitiveKind.OPAQUE)
        handle = numbers([])[0]
        self.assertIsInstance(handle, OpaqueHandle)
        self.assertFalse(handle.is_null)
        self.assertEqual(list(copy_from_handle(handle, "int32", (4,))), [7, 8, 9, 10])

    def test_opaque_out_parameter(self):
        thunk = self.bind("numbers_out", [by_reference(PrimitiveKind.OPAQUE)])
        _, outputs = thunk([Ref(OpaqueHandle())])
        self.assertEqual(outputs[0].address, ctypes.addressof(self.fake._numbers))

    def test_null_text_by_value(self):
        thunk = self.bind("text_length", [TEXT], PrimitiveKind.INT32)
        self.assertEqual(thunk([None])[0], -1)

    def test_unknown_symbol(self):
        with self.assertRaises(SymbolNotFound):
            self.bind("get_var_units", [TEXT, by_reference(PrimitiveKind.TEXT)])

    def test_thunk_invalid_after_close(self):
        thunk = self.bind("noop", [])
        self.library.close()
        with self.assertRaises(UseAfterClose):
            thunk([])


class TestMarshalingErrors(GeneratorTestCase):

    def test_text_longer_than_buffer(self):
        thunk = self.bind("text_length", [TEXT], PrimitiveKind.INT32)
        with self.assertRaises(MarshalingError):
            thunk(["x" * 33])
        self.assertEqual(thunk(["x" * 32])[0], 32)

    def test_unencodable_text(self):
        self.library.close()
        library = NativeLibrary.open(
            "libscalar.so", config=InteropConfig(codec="ascii"), loader=self.fake.loader
        )
        key = self.resolver.resolve(library, "text_length", [TEXT], PrimitiveKind.INT32)
        thunk = self.generator.generate(library, key)
        with self.assertRaises(MarshalingError):
            thunk(["débit"])

    def test_reference_requires_ref(self):
        thunk = self.bind("get_current_time", [by_reference(PrimitiveKind.FLOAT64)])
        with self.assertRaises(MarshalingError):
            thunk([0.0])

    def test_arity_mismatch(self):
        thunk = self.bind("add", [INT, INT], PrimitiveKind.INT32)
        with self.assertRaises(MarshalingError):
            thunk([1])

    def test_array_slot_overflow(self):
        thunk = self.bind("fill_array", [by_reference(PrimitiveKind.INT32, 6)])
        with self.assertRaises(MarshalingError):
            thunk([Ref(list(range(7)))])

    def test_scalar_coercion(self):
        self.assertEqual(coerce_scalar(PrimitiveKind.FLOAT64, 3), 3.0)
        self.assertIs(coerce_scalar(PrimitiveKind.BOOL, 1), True)
        for kind, value in (
            (PrimitiveKind.INT32, 2 ** 31),
            (PrimitiveKind.INT64, -(2 ** 63) - 1),
            (PrimitiveKind.INT32, 1.5),
            (PrimitiveKind.FLOAT64, "1.0"),
        ):
            with self.subTest(kind=kind, value=value):
                with self.assertRaises(MarshalingError):
                    coerce_scalar(kind, value)

    def test_bad_opaque_value(self):
        thunk = self.bind("noop", [by_value(PrimitiveKind.OPAQUE)])
        with self.assertRaises(MarshalingError):
            thunk(["0xdeadbeef"])

    def test_bad_opaque_reference_value(self):
        thunk = self.bind("numbers_out", [by_reference(PrimitiveKind.OPAQUE)])
        for value in ("x", 1.5, True):
            with self.subTest(value=value):
                with self.assertRaises(MarshalingError):
                    thunk([Ref(value)])

    def test_array_slot_needs_sequence(self):
        thunk = self.bind("fill_array", [by_reference(PrimitiveKind.INT32, 6)])
        for value in (7, ["a", "b"]):
            with self.subTest(value=value):
                with self.assertRaises(MarshalingError):
                    thunk([Ref(value)])


class TestWideText(unittest.TestCase):

    def test_unicode_round_trip(self):
        fake = WideTextLibrary()
        library = NativeLibrary.open(
            "libwide.so", charset=CharSet.UNICODE, config=InteropConfig(max_string_length=16), loader=fake.loader
        )
        resolver = SignatureResolver()
        key = resolver.resolve(library, "wecho", [TEXT, by_reference(PrimitiveKind.TEXT)])
        plan = ThunkGenerator().build_plan(library, key)
        self.assertEqual(plan.argtypes, (ctypes.c_wchar_p, ctypes.c_wchar_p))

        thunk = ThunkGenerator().generate(library, key)
        _, outputs = thunk(["höhe", Ref("")])
        self.assertEqual(outputs[1], "höhe")


if __name__ == "__main__":
    unittest.main()
