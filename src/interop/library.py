"""
src/interop/library.py

The Native Library Handle.

Key Responsibilities:
1. Load the shared library (.so/.dylib/.dll) inside a scoped working directory,
   so dependencies sitting next to it resolve.
2. Fix the calling convention and character set every thunk of this handle
   will use.
3. Resolve exported symbol names to entry-point addresses.
4. Release the OS handle exactly once; afterwards every operation raises
   UseAfterClose.
"""

import ctypes
import logging
import os
import sys
from contextlib import nullcontext
from dataclasses import replace
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Optional, Union

from .cache import ThunkCache
from .config import InteropConfig
from .descriptors import CallingConvention, CharSet
from .errors import LoadError, SymbolNotFound, UseAfterClose
from .scope import working_directory

logger = logging.getLogger("BMI.Library")

Loader = Callable[[str], Any]


def _release_os_handle(dll: Any) -> None:
    """dlclose/FreeLibrary for handles produced by ctypes loaders; others are left alone."""
    handle = getattr(dll, "_handle", None)
    if not isinstance(handle, int) or not handle:
        return

    import _ctypes

    if os.name == "nt":
        _ctypes.FreeLibrary(handle)
    else:
        _ctypes.dlclose(handle)


class NativeLibrary:
    """
    One opened shared library plus its calling-convention and string settings.

    Use `NativeLibrary.open(...)` rather than the constructor; the handle is a
    context manager and closes itself on exit.
    """

    def __init__(
        self,
        path: Path,
        dll: Any,
        config: InteropConfig,
        dll_directory: Any = None,
        release: Callable[[Any], None] = _release_os_handle,
    ):
        self.path = path
        self.config = config
        self.calling_convention = config.calling_convention
        self.charset = config.charset
        self.cache = ThunkCache()
        self._dll = dll
        self._dll_directory = dll_directory
        self._release = release
        self._closed = False
        self._close_lock = Lock()
        self._prototype_factory = self._select_prototype_factory()

    @classmethod
    def open(
        cls,
        path: Union[str, Path],
        calling_convention: Optional[CallingConvention] = None,
        charset: Optional[CharSet] = None,
        config: Optional[InteropConfig] = None,
        loader: Optional[Loader] = None,
    ) -> "NativeLibrary":
        """
        Opens `path` as a shared library.

        Args:
            path: File path, or a bare library name left to the OS search path.
            calling_convention: Overrides config.calling_convention.
            charset: Overrides config.charset.
            config: Handle configuration (defaults to InteropConfig()).
            loader: Callable turning a path into a library object. Defaults to
                ctypes.CDLL; tests inject in-process fakes here.

        Raises:
            LoadError: if the path is missing or the loader rejects it.
        """
        config = config or InteropConfig()
        overrides = {}
        if calling_convention is not None:
            overrides["calling_convention"] = calling_convention
        if charset is not None:
            overrides["charset"] = charset
        if overrides:
            config = replace(config, **overrides)

        lib_path = Path(path)
        directory = None
        # Bare names and paths the OS resolves itself (e.g. the macOS dyld
        # cache) go straight to the loader.
        if lib_path.parent != Path(".") and lib_path.exists():
            lib_path = lib_path.resolve()
            directory = lib_path.parent

        logger.info(f"Loading shared library: {lib_path} ({config.calling_convention.value}, {config.charset.value})")
        scope = working_directory(directory) if config.chdir_on_load and directory else nullcontext()
        load = loader or ctypes.CDLL

        dll_directory = None
        with scope:
            try:
                if directory is not None and hasattr(os, "add_dll_directory"):
                    dll_directory = os.add_dll_directory(str(directory))
                dll = load(str(lib_path))
            except OSError as e:
                if dll_directory is not None:
                    dll_directory.close()
                logger.error(f"Failed to load shared library {lib_path}: {e}")
                raise LoadError(f"Could not load shared library '{lib_path}': {e}") from e

        if loader is None:
            return cls(lib_path, dll, config, dll_directory)
        # injected loaders own their objects
        return cls(lib_path, dll, config, dll_directory, release=lambda _: None)

    def _select_prototype_factory(self) -> Callable[..., Any]:
        if self.calling_convention is CallingConvention.STDCALL:
            factory = getattr(ctypes, "WINFUNCTYPE", None)
            if factory is not None:
                return factory
            logger.warning(
                f"stdcall is not available on {sys.platform}; "
                f"calls into {self.path.name} use the platform C convention."
            )
        return ctypes.CFUNCTYPE

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_open(self) -> None:
        if self._closed:
            raise UseAfterClose(f"Library '{self.path}' has been closed.")

    def prototype(self, restype: Any, *argtypes: Any) -> Any:
        """Function-pointer type for this handle's calling convention."""
        self.ensure_open()
        return self._prototype_factory(restype, *argtypes)

    def symbol_address(self, name: str) -> int:
        """
        Returns the entry-point address of an exported symbol.

        Raises:
            SymbolNotFound: if the library does not export `name`.
            UseAfterClose: if the handle is closed.
        """
        self.ensure_open()
        try:
            func = self._dll[name]
        except (AttributeError, KeyError, TypeError) as e:
            raise SymbolNotFound(f"Symbol '{name}' not found in '{self.path.name}'.") from e

        address = ctypes.cast(func, ctypes.c_void_p).value
        if not address:
            raise SymbolNotFound(f"Symbol '{name}' in '{self.path.name}' resolved to a null address.")
        return address

    def has_symbol(self, name: str) -> bool:
        try:
            self.symbol_address(name)
        except SymbolNotFound:
            return False
        return True

    def close(self) -> None:
        """Releases the OS handle. Closing twice is a no-op."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            dll, self._dll = self._dll, None

        logger.info(f"Closing shared library: {self.path} ({len(self.cache)} thunks bound)")
        try:
            self._release(dll)
        finally:
            if self._dll_directory is not None:
                self._dll_directory.close()
                self._dll_directory = None

    def __enter__(self) -> "NativeLibrary":
        self.ensure_open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<NativeLibrary {self.path.name} {self.calling_convention.value}/{self.charset.value} {state}>"
