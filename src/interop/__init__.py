"""
Dynamic native-function invocation.

Calls functions exported by a shared library that is not known until run time,
using only the symbol name and the argument shapes stated at the call site.
Bindings ("thunks") are generated once per signature and cached per library.
"""

from .config import InteropConfig, MAXDIMS, MAXSTRLEN
from .descriptors import (
    ArgumentDescriptor,
    CallingConvention,
    CharSet,
    NativeSignatureKey,
    OpaqueHandle,
    PassingMode,
    PrimitiveKind,
    Ref,
    by_reference,
    by_value,
    infer_descriptor,
)
from .errors import (
    InteropError,
    LoadError,
    MarshalingError,
    SymbolNotFound,
    UnsupportedArgumentKind,
    UnsupportedRank,
    UseAfterClose,
)
from .cache import ThunkCache
from .library import NativeLibrary
from .resolver import SignatureResolver
from .generator import MarshalPlan, Thunk, ThunkGenerator
from .dispatcher import InvocationDispatcher, call
from .scope import working_directory

__all__ = [
    "InteropConfig",
    "MAXDIMS",
    "MAXSTRLEN",
    "ArgumentDescriptor",
    "CallingConvention",
    "CharSet",
    "NativeSignatureKey",
    "OpaqueHandle",
    "PassingMode",
    "PrimitiveKind",
    "Ref",
    "by_reference",
    "by_value",
    "infer_descriptor",
    "InteropError",
    "LoadError",
    "MarshalingError",
    "SymbolNotFound",
    "UnsupportedArgumentKind",
    "UnsupportedRank",
    "UseAfterClose",
    "ThunkCache",
    "NativeLibrary",
    "SignatureResolver",
    "MarshalPlan",
    "Thunk",
    "ThunkGenerator",
    "InvocationDispatcher",
    "call",
    "working_directory",
]

__version__ = "0.1.0"
