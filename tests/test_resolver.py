"""
tests/test_resolver.py

Unit Tests for the Signature Resolver.

The resolver is a pure function of (symbol, descriptors, return kind); these
tests pin down key identity and the rejection of unsupported descriptors.
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from src.interop.descriptors import (
    ArgumentDescriptor,
    NativeSignatureKey,
    PassingMode,
    PrimitiveKind,
    Ref,
    by_reference,
    by_value,
    infer_descriptor,
)
from src.interop.errors import SymbolNotFound, UnsupportedArgumentKind, UseAfterClose
from src.interop.resolver import SignatureResolver


class TestSignatureResolver(unittest.TestCase):

    def setUp(self):
        self.resolver = SignatureResolver()

    def test_same_call_site_same_key(self):
        descriptors = [by_value(PrimitiveKind.TEXT), by_reference(PrimitiveKind.INT32)]
        first = self.resolver.resolve(None, "get_var_rank", descriptors)
        second = self.resolver.resolve(None, "get_var_rank", list(descriptors))

        self.assertEqual(first, second)
        self.assertEqual(hash(first), hash(second))
        self.assertEqual(first.returns, PrimitiveKind.NONE)

    def test_overloads_get_distinct_keys(self):
        """
        Test Case: Same symbol, different arity / kind / mode.
        Expected: Three different keys.
        """
        one = self.resolver.resolve(None, "update", [by_reference(PrimitiveKind.FLOAT64)])
        by_val = self.resolver.resolve(None, "update", [by_value(PrimitiveKind.FLOAT64)])
        none = self.resolver.resolve(None, "update", [])

        self.assertEqual(len({one, by_val, none}), 3)

    def test_return_kind_is_part_of_key(self):
        void = self.resolver.resolve(None, "label", [])
        text = self.resolver.resolve(None, "label", [], PrimitiveKind.TEXT)
        self.assertNotEqual(void, text)

    def test_key_parameters(self):
        key = self.resolver.resolve(
            None, "get_var_shape", [by_value(PrimitiveKind.TEXT), by_reference(PrimitiveKind.INT32, 6)]
        )
        self.assertEqual(
            key.parameters,
            (
                (PrimitiveKind.TEXT, PassingMode.VALUE, None),
                (PrimitiveKind.INT32, PassingMode.REFERENCE, 6),
            ),
        )
        self.assertEqual(str(key), "none get_var_shape(text, int32&[6])")

    def test_unsupported_argument_kinds(self):
        for bad in (
            ArgumentDescriptor(PrimitiveKind.NONE),
            ArgumentDescriptor("complex128"),
            infer_descriptor(object()),
        ):
            with self.subTest(descriptor=bad):
                with self.assertRaises(UnsupportedArgumentKind):
                    self.resolver.resolve(None, "noop", [bad])

    def test_unsupported_return_kind(self):
        with self.assertRaises(UnsupportedArgumentKind):
            self.resolver.resolve(None, "noop", [], returns="float128")

    def test_invalid_passing_mode(self):
        with self.assertRaises(UnsupportedArgumentKind):
            self.resolver.resolve(None, "noop", [ArgumentDescriptor(PrimitiveKind.INT32, "inout")])

    def test_invalid_array_slots(self):
        for bad in (
            ArgumentDescriptor(PrimitiveKind.INT32, PassingMode.VALUE, 6),
            ArgumentDescriptor(PrimitiveKind.TEXT, PassingMode.REFERENCE, 6),
            by_reference(PrimitiveKind.INT32, 0),
        ):
            with self.subTest(descriptor=bad):
                with self.assertRaises(UnsupportedArgumentKind):
                    self.resolver.resolve(None, "get_var_shape", [bad])

    def test_empty_symbol(self):
        with self.assertRaises(SymbolNotFound):
            self.resolver.resolve(None, "", [])

    def test_closed_library(self):
        library = MagicMock()
        library.ensure_open.side_effect = UseAfterClose("closed")
        with self.assertRaises(UseAfterClose):
            self.resolver.resolve(library, "noop", [])

    def test_does_not_touch_library_symbols(self):
        library = MagicMock()
        self.resolver.resolve(library, "noop", [by_value(PrimitiveKind.INT32)])
        library.symbol_address.assert_not_called()
        library.cache.get_or_create.assert_not_called()


class TestDescriptorInference(unittest.TestCase):

    def test_scalars(self):
        self.assertEqual(infer_descriptor(True), by_value(PrimitiveKind.BOOL))
        self.assertEqual(infer_descriptor(3), by_value(PrimitiveKind.INT32))
        self.assertEqual(infer_descriptor(3.5), by_value(PrimitiveKind.FLOAT64))
        self.assertEqual(infer_descriptor("name"), by_value(PrimitiveKind.TEXT))
        self.assertEqual(infer_descriptor(None), by_value(PrimitiveKind.OPAQUE))

    def test_references(self):
        self.assertEqual(infer_descriptor(Ref(0.0)), by_reference(PrimitiveKind.FLOAT64))
        self.assertEqual(infer_descriptor(Ref(0)), by_reference(PrimitiveKind.INT32))
        self.assertEqual(infer_descriptor(Ref([0] * 6)), by_reference(PrimitiveKind.INT32, 6))
        self.assertEqual(infer_descriptor(Ref()), by_reference(PrimitiveKind.OPAQUE))

    def test_key_is_hashable_and_frozen(self):
        key = NativeSignatureKey("noop", ())
        with self.assertRaises(Exception):
            key.symbol = "other"
        self.assertEqual({key: 1}[NativeSignatureKey("noop", ())], 1)


if __name__ == "__main__":
    unittest.main()
