"""
src/interop/descriptors.py

Call-site vocabulary of the invocation layer.

A native signature is never read from the library itself. It is assembled from
what the caller states at the call site:
1. One ArgumentDescriptor per argument (primitive kind + passing mode).
2. The declared return kind.
3. The calling convention and character set of the library handle.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


class CallingConvention(Enum):
    """Who cleans the stack after a native call."""
    CDECL = "cdecl"      # caller cleanup
    STDCALL = "stdcall"  # callee cleanup


class CharSet(Enum):
    ANSI = "ansi"        # char*, encoded with the configured codec
    UNICODE = "unicode"  # wchar_t*


class PrimitiveKind(Enum):
    INT32 = "int32"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    BOOL = "bool"
    TEXT = "text"
    OPAQUE = "opaque"
    NONE = "none"  # return kind only


class PassingMode(Enum):
    VALUE = "value"
    REFERENCE = "reference"


ARGUMENT_KINDS = frozenset(kind for kind in PrimitiveKind if kind is not PrimitiveKind.NONE)
RETURN_KINDS = frozenset(PrimitiveKind)
NUMERIC_KINDS = frozenset({
    PrimitiveKind.INT32,
    PrimitiveKind.INT64,
    PrimitiveKind.FLOAT32,
    PrimitiveKind.FLOAT64,
    PrimitiveKind.BOOL,
})


@dataclass(frozen=True)
class ArgumentDescriptor:
    """
    Describes one argument as observed at the call site.

    `length` turns a by-reference numeric argument into a fixed-size array slot
    (e.g. the shape buffer of a variable). Text buffers take their length from
    the library configuration instead.
    """
    kind: PrimitiveKind
    mode: PassingMode = PassingMode.VALUE
    length: Optional[int] = None

    @property
    def by_reference(self) -> bool:
        return self.mode is PassingMode.REFERENCE


@dataclass
class Ref:
    """A caller-owned slot that the native side may overwrite."""
    value: Any = None


@dataclass(frozen=True)
class OpaqueHandle:
    """
    A raw address handed out by the callee.

    The memory behind it belongs to the native library; nothing is copied until
    the caller knows the element count and asks for a copy explicitly.
    """
    address: Optional[int] = None

    @property
    def is_null(self) -> bool:
        return not self.address

    def __bool__(self) -> bool:
        return not self.is_null


@dataclass(frozen=True)
class NativeSignatureKey:
    """(symbol, ((kind, mode, length), ...), return kind) - identifies one thunk."""
    symbol: str
    parameters: Tuple[Tuple[PrimitiveKind, PassingMode, Optional[int]], ...]
    returns: PrimitiveKind = PrimitiveKind.NONE

    def __str__(self) -> str:
        params = ", ".join(
            f"{kind.value}{'&' if mode is PassingMode.REFERENCE else ''}"
            f"{f'[{length}]' if length else ''}"
            for kind, mode, length in self.parameters
        )
        return f"{self.returns.value} {self.symbol}({params})"


def by_value(kind: PrimitiveKind) -> ArgumentDescriptor:
    return ArgumentDescriptor(kind, PassingMode.VALUE)


def by_reference(kind: PrimitiveKind, length: Optional[int] = None) -> ArgumentDescriptor:
    return ArgumentDescriptor(kind, PassingMode.REFERENCE, length)


def _kind_of(value: Any) -> Any:
    # bool is checked before int on purpose: bool is an int subclass
    if isinstance(value, bool):
        return PrimitiveKind.BOOL
    if isinstance(value, int):
        return PrimitiveKind.INT32
    if isinstance(value, float):
        return PrimitiveKind.FLOAT64
    if isinstance(value, (str, bytes, bytearray)):
        return PrimitiveKind.TEXT
    if isinstance(value, OpaqueHandle) or value is None:
        return PrimitiveKind.OPAQUE
    return type(value)


def infer_descriptor(value: Any) -> ArgumentDescriptor:
    """
    Derives a descriptor from a bare runtime value.

    Python ints map to 32-bit integers and floats to doubles, the widths most
    model libraries export. A Ref is passed by reference; a Ref holding a list
    becomes an array slot of that length. Unknown types produce a descriptor
    whose kind is the Python type itself, which the resolver rejects.
    """
    if isinstance(value, Ref):
        inner = value.value
        if isinstance(inner, (list, tuple)):
            kind = _kind_of(inner[0]) if inner else PrimitiveKind.INT32
            return by_reference(kind, len(inner))
        return by_reference(_kind_of(inner))
    return by_value(_kind_of(value))
