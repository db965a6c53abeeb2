"""
src/interop/resolver.py

The Signature Resolver: (symbol, descriptors, return kind) -> NativeSignatureKey.

Pure: it neither loads symbols nor touches the cache. Passing mode always comes
from the call site; an output parameter is an output only because the caller
said so.
"""

import logging
from typing import Iterable, Optional, TYPE_CHECKING

from .descriptors import (
    ARGUMENT_KINDS,
    NUMERIC_KINDS,
    RETURN_KINDS,
    ArgumentDescriptor,
    NativeSignatureKey,
    PassingMode,
    PrimitiveKind,
)
from .errors import SymbolNotFound, UnsupportedArgumentKind

if TYPE_CHECKING:
    from .library import NativeLibrary

logger = logging.getLogger("BMI.Resolver")


class SignatureResolver:

    def resolve(
        self,
        library: Optional["NativeLibrary"],
        symbol: str,
        descriptors: Iterable[ArgumentDescriptor],
        returns: PrimitiveKind = PrimitiveKind.NONE,
    ) -> NativeSignatureKey:
        """
        Canonicalises one call site into a signature key.

        Raises:
            UnsupportedArgumentKind: for kinds outside the supported set or
                malformed array lengths.
            SymbolNotFound: for an empty symbol name.
            UseAfterClose: if `library` is given and already closed.
        """
        if library is not None:
            library.ensure_open()
        if not isinstance(symbol, str) or not symbol:
            raise SymbolNotFound(f"Invalid symbol name: {symbol!r}")

        parameters = []
        for position, descriptor in enumerate(descriptors):
            parameters.append(self._canonical_parameter(symbol, position, descriptor))

        if returns not in RETURN_KINDS:
            logger.error(f"Unsupported return kind {returns!r} for '{symbol}'")
            raise UnsupportedArgumentKind(f"'{symbol}' declares unsupported return kind {returns!r}")

        key = NativeSignatureKey(symbol, tuple(parameters), returns)
        logger.debug(f"Resolved signature {key}")
        return key

    def _canonical_parameter(self, symbol: str, position: int, descriptor: ArgumentDescriptor):
        kind = getattr(descriptor, "kind", None)
        mode = getattr(descriptor, "mode", None)
        length = getattr(descriptor, "length", None)

        if kind not in ARGUMENT_KINDS:
            logger.error(f"Unsupported argument kind {kind!r} at position {position} of '{symbol}'")
            raise UnsupportedArgumentKind(
                f"Argument {position} of '{symbol}' has unsupported kind {kind!r}"
            )
        if not isinstance(mode, PassingMode):
            raise UnsupportedArgumentKind(
                f"Argument {position} of '{symbol}' has unsupported passing mode {mode!r}"
            )

        if length is not None:
            if mode is not PassingMode.REFERENCE or kind not in NUMERIC_KINDS:
                raise UnsupportedArgumentKind(
                    f"Argument {position} of '{symbol}': array slots must be by-reference numeric"
                )
            if isinstance(length, bool) or not isinstance(length, int) or length < 1:
                raise UnsupportedArgumentKind(
                    f"Argument {position} of '{symbol}' has invalid array length {length!r}"
                )

        return (kind, mode, length)
