"""
src/interop/dispatcher.py

The Invocation Dispatcher: the single entry point for native calls.

Per signature the state only moves forward:
    Unresolved -> Resolved(key) -> Bound(thunk) -> Invoked*
Resolution and binding happen once per distinct signature; later calls go
straight from the cache to the native function. Closing the library ends all
of them.
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .cache import ThunkCache
from .descriptors import ArgumentDescriptor, PrimitiveKind, infer_descriptor
from .generator import ThunkGenerator
from .library import NativeLibrary
from .resolver import SignatureResolver

logger = logging.getLogger("BMI.Dispatcher")


class InvocationDispatcher:
    """
    Calls symbols of one library by name with runtime-typed arguments.

    Example:
        t = Ref(0.0)
        dispatcher.call("get_current_time", [(t, by_reference(PrimitiveKind.FLOAT64))])
        t.value  # -> whatever the library wrote
    """

    def __init__(
        self,
        library: NativeLibrary,
        resolver: Optional[SignatureResolver] = None,
        generator: Optional[ThunkGenerator] = None,
        cache: Optional[ThunkCache] = None,
    ):
        self.library = library
        self.resolver = resolver or SignatureResolver()
        self.generator = generator or ThunkGenerator()
        self.cache = cache if cache is not None else library.cache

    def call(
        self,
        symbol: str,
        args: Iterable[Any] = (),
        returns: PrimitiveKind = PrimitiveKind.NONE,
    ) -> Any:
        """
        Invokes `symbol` and returns its declared return value (None for void).

        Args:
            symbol: Exported function name.
            args: `(value, ArgumentDescriptor)` pairs, or bare values whose
                descriptor is inferred (a Ref is passed by reference).
            returns: Declared return kind.

        By-reference outputs are written into the Ref objects the caller passed.
        Errors from any stage propagate unchanged; nothing is retried.
        """
        self.library.ensure_open()
        values, descriptors = self._split(args)

        key = self.resolver.resolve(self.library, symbol, descriptors, returns)
        thunk = self.cache.get_or_create(self.library, key, self.generator.generate)

        result, outputs = thunk(values)
        for position, output in outputs.items():
            values[position].value = output

        logger.debug(f"Called {key} -> {result!r} ({len(outputs)} outputs)")
        return result

    @staticmethod
    def _split(args: Iterable[Any]) -> Tuple[List[Any], List[ArgumentDescriptor]]:
        values, descriptors = [], []
        for arg in args:
            if isinstance(arg, tuple) and len(arg) == 2 and isinstance(arg[1], ArgumentDescriptor):
                value, descriptor = arg
            else:
                value, descriptor = arg, infer_descriptor(arg)
            values.append(value)
            descriptors.append(descriptor)
        return values, descriptors


def call(
    library: NativeLibrary,
    symbol: str,
    args: Sequence[Any] = (),
    returns: PrimitiveKind = PrimitiveKind.NONE,
) -> Any:
    """Functional shorthand for a one-off call through the library's shared cache."""
    return InvocationDispatcher(library).call(symbol, args, returns)
