"""
src/interop/errors.py

Failure taxonomy of the native invocation layer.

None of these are retried automatically: a native call may already have had
side effects by the time it fails, so the caller decides what happens next.
"""


class InteropError(Exception):
    """Base exception for the invocation layer."""

    pass


class LoadError(InteropError):
    """The path does not resolve to a loadable shared library."""

    pass


class SymbolNotFound(InteropError):
    """The requested entry point is not exported by the library."""

    pass


class UnsupportedArgumentKind(InteropError):
    """An argument or return descriptor is outside the supported primitive set."""

    pass


class UnsupportedRank(InteropError):
    """A variable has a rank the array copy-back does not handle."""

    pass


class UseAfterClose(InteropError):
    """An operation was attempted on a library handle that was already closed."""

    pass


class MarshalingError(InteropError):
    """A value could not be converted to or from its native representation."""

    pass
