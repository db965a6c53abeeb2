"""
src/interop/generator.py

The Thunk Generator: NativeSignatureKey -> Thunk.

Instead of emitting code per signature, the generator builds a MarshalPlan once
per key from a small table of (kind, mode) -> packing rule, and binds it to a
ctypes function pointer shaped by the library's calling convention. Every call
through the resulting Thunk just interprets that plan:

    prepare(values) -> native args + scratch slots
    function(*native args)
    convert(result), collect(slots) -> by-reference outputs
"""

import ctypes
import logging
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from .descriptors import (
    CharSet,
    NativeSignatureKey,
    OpaqueHandle,
    PassingMode,
    PrimitiveKind,
    Ref,
)
from .errors import MarshalingError, SymbolNotFound, UnsupportedArgumentKind

if TYPE_CHECKING:
    from .library import NativeLibrary

logger = logging.getLogger("BMI.Generator")

SCALAR_CTYPES = {
    PrimitiveKind.INT32: ctypes.c_int32,
    PrimitiveKind.INT64: ctypes.c_int64,
    PrimitiveKind.FLOAT32: ctypes.c_float,
    PrimitiveKind.FLOAT64: ctypes.c_double,
    PrimitiveKind.BOOL: ctypes.c_bool,
}

_INT_RANGES = {
    PrimitiveKind.INT32: (-(2 ** 31), 2 ** 31 - 1),
    PrimitiveKind.INT64: (-(2 ** 63), 2 ** 63 - 1),
}

_ZERO = {
    PrimitiveKind.INT32: 0,
    PrimitiveKind.INT64: 0,
    PrimitiveKind.FLOAT32: 0.0,
    PrimitiveKind.FLOAT64: 0.0,
    PrimitiveKind.BOOL: False,
}


def coerce_scalar(kind: PrimitiveKind, value: Any) -> Any:
    """Converts a Python value to what the scalar ctype of `kind` accepts, without silent truncation."""
    try:
        if kind is PrimitiveKind.BOOL:
            return bool(value)
        if kind in (PrimitiveKind.FLOAT32, PrimitiveKind.FLOAT64):
            if isinstance(value, (str, bytes, bytearray)):
                raise TypeError(f"{type(value).__name__} is not a number")
            return float(value)
        number = operator.index(value)
    except (TypeError, ValueError) as e:
        raise MarshalingError(f"Cannot pass {value!r} as {kind.value}: {e}") from e

    low, high = _INT_RANGES[kind]
    if not low <= number <= high:
        raise MarshalingError(f"{number} does not fit in {kind.value}")
    return number


# ---------------------------------------------------------------------------
# Packing rules
# ---------------------------------------------------------------------------

class ScalarValue:
    """Numeric or boolean passed inline."""
    writes_back = False

    def __init__(self, kind: PrimitiveKind, length: Optional[int], library: "NativeLibrary"):
        self.kind = kind
        self.argtype = SCALAR_CTYPES[kind]

    def prepare(self, value: Any) -> Tuple[Any, Any]:
        return coerce_scalar(self.kind, value), None


class ScalarReference:
    """
    Address of a scratch cell (or fixed-length array) initialised from the
    caller's Ref; the cell is read back after the call.
    """
    writes_back = True

    def __init__(self, kind: PrimitiveKind, length: Optional[int], library: "NativeLibrary"):
        self.kind = kind
        self.length = length
        self.ctype = SCALAR_CTYPES[kind]
        self.argtype = ctypes.POINTER(self.ctype)

    def prepare(self, ref: Any) -> Tuple[Any, Any]:
        if not isinstance(ref, Ref):
            raise MarshalingError(f"By-reference {self.kind.value} argument needs a Ref, got {type(ref).__name__}")

        if self.length is None:
            initial = _ZERO[self.kind] if ref.value is None else ref.value
            cell = self.ctype(coerce_scalar(self.kind, initial))
            return ctypes.byref(cell), cell

        try:
            initial = [] if ref.value is None else list(ref.value)
        except TypeError as e:
            raise MarshalingError(f"Array slot needs a sequence of {self.kind.value}, got {ref.value!r}") from e
        if len(initial) > self.length:
            raise MarshalingError(
                f"Array slot holds {self.length} elements, got {len(initial)}"
            )
        cells = (self.ctype * self.length)(*(coerce_scalar(self.kind, v) for v in initial))
        return cells, cells

    def collect(self, slot: Any) -> Any:
        if self.length is None:
            return slot.value
        return list(slot)


class TextBuffer:
    """
    Fixed-length string buffer: content right-padded with the fill character
    to the configured maximum length, plus one terminator.
    """

    def __init__(self, kind: PrimitiveKind, length: Optional[int], library: "NativeLibrary", writes_back: bool):
        config = library.config
        self.writes_back = writes_back
        self.size = config.max_string_length
        self.codec = config.codec
        self.wide = library.charset is CharSet.UNICODE
        self.fill = config.fill_char
        if self.wide:
            self.argtype = ctypes.c_wchar_p
        else:
            self.argtype = ctypes.c_char_p
            # single byte, checked by InteropConfig
            self.fill_byte = config.fill_char.encode(self.codec)

    def prepare(self, value: Any) -> Tuple[Any, Any]:
        if self.writes_back:
            if not isinstance(value, Ref):
                raise MarshalingError(f"By-reference text argument needs a Ref, got {type(value).__name__}")
            value = "" if value.value is None else value.value
        elif value is None:
            return None, None

        buffer = self._unicode_buffer(value) if self.wide else self._byte_buffer(value)
        return buffer, buffer

    def _byte_buffer(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            data = bytes(value)
        elif isinstance(value, str):
            try:
                data = value.encode(self.codec)
            except UnicodeEncodeError as e:
                raise MarshalingError(f"Cannot encode {value!r} as {self.codec}: {e}") from e
        else:
            raise MarshalingError(f"Text argument must be str or bytes, got {type(value).__name__}")

        if len(data) > self.size:
            raise MarshalingError(f"Text of {len(data)} bytes exceeds the {self.size}-byte buffer")
        return ctypes.create_string_buffer(data.ljust(self.size, self.fill_byte), self.size + 1)

    def _unicode_buffer(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            try:
                value = bytes(value).decode(self.codec)
            except UnicodeDecodeError as e:
                raise MarshalingError(f"Cannot decode {value!r} as {self.codec}: {e}") from e
        elif not isinstance(value, str):
            raise MarshalingError(f"Text argument must be str or bytes, got {type(value).__name__}")

        if len(value) > self.size:
            raise MarshalingError(f"Text of {len(value)} characters exceeds the {self.size}-character buffer")
        return ctypes.create_unicode_buffer(value.ljust(self.size, self.fill), self.size + 1)

    def collect(self, buffer: Any) -> str:
        if self.wide:
            text = buffer.value
            return text.rstrip(self.fill) if self.fill != "\0" else text

        data = buffer.raw.split(b"\0", 1)[0]
        if self.fill_byte != b"\0":
            data = data.rstrip(self.fill_byte)
        try:
            return data.decode(self.codec)
        except UnicodeDecodeError as e:
            raise MarshalingError(f"Native side wrote undecodable {self.codec} text: {e}") from e


class OpaqueValue:
    writes_back = False
    argtype = ctypes.c_void_p

    def __init__(self, kind: PrimitiveKind, length: Optional[int], library: "NativeLibrary"):
        pass

    def prepare(self, value: Any) -> Tuple[Any, Any]:
        if isinstance(value, OpaqueHandle):
            return value.address, None
        if value is None or (isinstance(value, int) and not isinstance(value, bool)):
            return value, None
        raise MarshalingError(f"Opaque argument must be an OpaqueHandle or address, got {type(value).__name__}")


class OpaqueReference:
    """void** out-parameter: the callee stores an address it owns."""
    writes_back = True
    argtype = ctypes.POINTER(ctypes.c_void_p)

    def __init__(self, kind: PrimitiveKind, length: Optional[int], library: "NativeLibrary"):
        pass

    def prepare(self, ref: Any) -> Tuple[Any, Any]:
        if not isinstance(ref, Ref):
            raise MarshalingError(f"By-reference opaque argument needs a Ref, got {type(ref).__name__}")
        initial = ref.value.address if isinstance(ref.value, OpaqueHandle) else ref.value
        if not (initial is None or (isinstance(initial, int) and not isinstance(initial, bool))):
            raise MarshalingError(
                f"By-reference opaque argument must hold an OpaqueHandle or address, got {type(initial).__name__}"
            )
        cell = ctypes.c_void_p(initial)
        return ctypes.byref(cell), cell

    def collect(self, cell: Any) -> OpaqueHandle:
        return OpaqueHandle(cell.value)


def _text_value(kind, length, library):
    return TextBuffer(kind, length, library, writes_back=False)


def _text_reference(kind, length, library):
    return TextBuffer(kind, length, library, writes_back=True)


PACKING_RULES: Dict[Tuple[PrimitiveKind, PassingMode], Callable[..., Any]] = {
    (PrimitiveKind.TEXT, PassingMode.VALUE): _text_value,
    (PrimitiveKind.TEXT, PassingMode.REFERENCE): _text_reference,
    (PrimitiveKind.OPAQUE, PassingMode.VALUE): OpaqueValue,
    (PrimitiveKind.OPAQUE, PassingMode.REFERENCE): OpaqueReference,
}
for _kind in SCALAR_CTYPES:
    PACKING_RULES[(_kind, PassingMode.VALUE)] = ScalarValue
    PACKING_RULES[(_kind, PassingMode.REFERENCE)] = ScalarReference


# ---------------------------------------------------------------------------
# Return conversion
# ---------------------------------------------------------------------------

class ReturnRule:
    def __init__(self, kind: PrimitiveKind, library: "NativeLibrary"):
        self.kind = kind
        self.codec = library.config.codec
        if kind is PrimitiveKind.NONE:
            self.restype = None
        elif kind in SCALAR_CTYPES:
            self.restype = SCALAR_CTYPES[kind]
        elif kind is PrimitiveKind.TEXT:
            self.restype = ctypes.c_wchar_p if library.charset is CharSet.UNICODE else ctypes.c_char_p
        elif kind is PrimitiveKind.OPAQUE:
            self.restype = ctypes.c_void_p
        else:
            raise UnsupportedArgumentKind(f"Unsupported return kind {kind!r}")

    def convert(self, raw: Any) -> Any:
        if self.kind is PrimitiveKind.NONE:
            return None
        if self.kind is PrimitiveKind.OPAQUE:
            # no copy: the memory stays with the callee
            return OpaqueHandle(raw)
        if self.kind is PrimitiveKind.TEXT and isinstance(raw, bytes):
            try:
                return raw.decode(self.codec)
            except UnicodeDecodeError as e:
                raise MarshalingError(f"Native side returned undecodable {self.codec} text: {e}") from e
        return raw


# ---------------------------------------------------------------------------
# Plan & Thunk
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MarshalPlan:
    rules: Tuple[Any, ...]
    result: ReturnRule

    @property
    def argtypes(self) -> Tuple[Any, ...]:
        return tuple(rule.argtype for rule in self.rules)

    @property
    def restype(self) -> Any:
        return self.result.restype

    def prepare(self, values: Sequence[Any]) -> Tuple[List[Any], List[Any]]:
        native_args, slots = [], []
        for rule, value in zip(self.rules, values):
            native, slot = rule.prepare(value)
            native_args.append(native)
            slots.append(slot)
        return native_args, slots

    def collect(self, slots: Sequence[Any]) -> Dict[int, Any]:
        return {
            position: rule.collect(slot)
            for position, (rule, slot) in enumerate(zip(self.rules, slots))
            if rule.writes_back
        }


@dataclass(frozen=True, eq=False)
class Thunk:
    """
    Reusable binding of one signature key to an entry point. Immutable; valid
    only while its library is open.
    """
    key: NativeSignatureKey
    plan: MarshalPlan
    function: Any
    library: "NativeLibrary"
    address: int

    def __call__(self, values: Sequence[Any]) -> Tuple[Any, Dict[int, Any]]:
        """
        Executes the native call. Blocks until the callee returns.

        Returns:
            (converted return value, {argument position: by-reference output})
        """
        self.library.ensure_open()
        if len(values) != len(self.plan.rules):
            raise MarshalingError(
                f"{self.key.symbol} expects {len(self.plan.rules)} arguments, got {len(values)}"
            )

        native_args, slots = self.plan.prepare(values)
        try:
            raw = self.function(*native_args)
        except ctypes.ArgumentError as e:
            raise MarshalingError(f"Arguments rejected by {self.key}: {e}") from e
        return self.plan.result.convert(raw), self.plan.collect(slots)


class ThunkGenerator:

    def build_plan(self, library: "NativeLibrary", key: NativeSignatureKey) -> MarshalPlan:
        rules = []
        for kind, mode, length in key.parameters:
            factory = PACKING_RULES.get((kind, mode))
            if factory is None:
                raise UnsupportedArgumentKind(f"No packing rule for {kind!r} passed by {mode!r}")
            rules.append(factory(kind, length, library))
        return MarshalPlan(tuple(rules), ReturnRule(key.returns, library))

    def generate(self, library: "NativeLibrary", key: NativeSignatureKey) -> Thunk:
        """
        Binds `key` to its exported entry point.

        Raises:
            SymbolNotFound: if the library does not export key.symbol.
        """
        try:
            address = library.symbol_address(key.symbol)
        except SymbolNotFound as e:
            logger.error(f"Cannot bind {key}: {e}")
            raise

        plan = self.build_plan(library, key)
        prototype = library.prototype(plan.restype, *plan.argtypes)
        function = prototype(address)
        logger.debug(f"Generated thunk for {key} at {address:#x} ({library.calling_convention.value})")
        return Thunk(key, plan, function, library, address)
