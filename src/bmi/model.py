"""
src/bmi/model.py

Basic Model Interface (BMI) adapter on top of the invocation layer.

Every method is a fixed sequence of named native calls:
- time queries pass a double by reference,
- strings travel in fixed-length, NUL-padded buffers (Fortran friendly),
- arrays come back as opaque addresses that are copied once rank and shape
  are known.

Any failure is fatal to the current run: the native model may be half-way
through a step, so nothing here retries or tries to recover.
"""

import logging
from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np

from src.interop.config import InteropConfig
from src.interop.descriptors import (
    CallingConvention,
    CharSet,
    OpaqueHandle,
    PrimitiveKind,
    Ref,
    by_reference,
    by_value,
)
from src.interop.dispatcher import InvocationDispatcher
from src.interop.errors import UnsupportedRank
from src.interop.library import Loader, NativeLibrary
from src.interop.scope import working_directory

from .arrays import copy_from_handle

logger = logging.getLogger("BMI.Model")

TEXT = by_value(PrimitiveKind.TEXT)
TEXT_OUT = by_reference(PrimitiveKind.TEXT)
INT_REF = by_reference(PrimitiveKind.INT32)
DOUBLE_REF = by_reference(PrimitiveKind.FLOAT64)
HANDLE_REF = by_reference(PrimitiveKind.OPAQUE)


class ModelLibrary:
    """
    A model engine loaded from a shared library exporting the BMI symbols.

    `calling_convention` overrides the one in `config`; strings always use
    the ANSI character set.
    """

    def __init__(
        self,
        library_path: Union[str, Path],
        calling_convention: Optional[CallingConvention] = None,
        config: Optional[InteropConfig] = None,
        loader: Optional[Loader] = None,
    ):
        config = config or InteropConfig()
        self.library = NativeLibrary.open(
            library_path,
            calling_convention=calling_convention,
            charset=CharSet.ANSI,
            config=config,
            loader=loader,
        )
        self.config = self.library.config
        self.dispatcher = InvocationDispatcher(self.library)
        self.time_step: Optional[timedelta] = None
        self._variable_names: Optional[List[str]] = None
        self._session: Optional[ExitStack] = None

    @classmethod
    def run(cls, library_path: Union[str, Path], config_path: Union[str, Path], **kwargs) -> None:
        """Runs a model in one go from start to end time."""
        with cls(library_path, **kwargs) as model:
            with model.session(config_path):
                end = model.get_end_time()
                while model.get_current_time() < end:
                    model.update(-1.0)

    # --- time -------------------------------------------------------------

    def _get_time(self, symbol: str) -> float:
        t = Ref(0.0)
        self.dispatcher.call(symbol, [(t, DOUBLE_REF)])
        return t.value

    def get_start_time(self) -> float:
        return self._get_time("get_start_time")

    def get_end_time(self) -> float:
        return self._get_time("get_end_time")

    def get_current_time(self) -> float:
        return self._get_time("get_current_time")

    def _as_datetime(self, seconds: float) -> datetime:
        return self.config.epoch + timedelta(seconds=seconds)

    @property
    def start_time(self) -> datetime:
        return self._as_datetime(self.get_start_time())

    @property
    def end_time(self) -> datetime:
        return self._as_datetime(self.get_end_time())

    @property
    def current_time(self) -> datetime:
        return self._as_datetime(self.get_current_time())

    # --- lifecycle --------------------------------------------------------

    def initialize(self, config_path: Union[str, Path]) -> None:
        """
        Initializes the model engine from a configuration file.

        The working directory is switched to the file's directory until
        finalize(), since model engines resolve their inputs relative to it.
        If the native initialize fails, the directory is restored before the
        error propagates. The session holds the working-directory lock, so
        finalize() must run on the thread that called initialize().
        """
        if self._session is not None:
            raise RuntimeError("Model is already initialized; call finalize() first.")

        path = Path(config_path)
        logger.info(f"Initializing model {self.library.path.name} with {path}")

        stack = ExitStack()
        with stack:
            stack.enter_context(working_directory(path.parent))
            self.dispatcher.call("initialize", [(path.name, TEXT)])
            self._session = stack.pop_all()

    def update(self, dt: float = -1.0) -> float:
        """
        Advances the model. dt = -1 lets the model pick its own step; the
        value the model leaves in the slot is returned.
        """
        step = Ref(float(dt))
        self.dispatcher.call("update", [(step, DOUBLE_REF)])
        if step.value >= 0:
            self.time_step = timedelta(seconds=step.value)
        return step.value

    def finalize(self) -> None:
        """Shuts the model down and restores the working directory."""
        logger.info(f"Finalizing model {self.library.path.name}")
        session, self._session = self._session, None
        try:
            self.dispatcher.call("finalize")
        finally:
            if session is not None:
                session.close()

    @contextmanager
    def session(self, config_path: Union[str, Path]) -> Iterator["ModelLibrary"]:
        """initialize() ... finalize() bracket."""
        self.initialize(config_path)
        try:
            yield self
        finally:
            self.finalize()

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
        self.library.close()

    def __enter__(self) -> "ModelLibrary":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- variables --------------------------------------------------------

    @property
    def variable_names(self) -> List[str]:
        if self._variable_names is None:
            self._variable_names = self._get_variable_names()
        return self._variable_names

    def _get_variable_names(self) -> List[str]:
        count = Ref(0)
        self.dispatcher.call("get_var_count", [(count, INT_REF)])

        names = []
        for i in range(count.value):
            index = Ref(i)
            name = Ref("")
            self.dispatcher.call("get_var_name", [(index, INT_REF), (name, TEXT_OUT)])
            names.append(name.value)
        logger.debug(f"Model exposes {len(names)} variables")
        return names

    def get_var_rank(self, name: str) -> int:
        rank = Ref(0)
        self.dispatcher.call("get_var_rank", [(name, TEXT), (rank, INT_REF)])
        return rank.value

    def get_var_shape(self, name: str, rank: Optional[int] = None) -> Tuple[int, ...]:
        """Dimensions of `name`; only the first `rank` entries of the shape buffer are meaningful."""
        if rank is None:
            rank = self.get_var_rank(name)
        if not 0 <= rank <= self.config.max_dims:
            raise UnsupportedRank(f"Variable '{name}' reports rank {rank} (max {self.config.max_dims})")

        shape = Ref([0] * self.config.max_dims)
        self.dispatcher.call(
            "get_var_shape",
            [(name, TEXT), (shape, by_reference(PrimitiveKind.INT32, self.config.max_dims))],
        )
        return tuple(shape.value[:rank])

    def _require_rank(self, name: str, expected: int) -> Tuple[int, ...]:
        rank = self.get_var_rank(name)
        if rank != expected:
            logger.error(f"Variable '{name}' has rank {rank}, expected {expected}")
            raise UnsupportedRank(f"Only variables with rank {expected} are supported here; '{name}' has rank {rank}")
        return self.get_var_shape(name, rank)

    def _get_array(self, symbol: str, name: str, dtype, shape: Tuple[int, ...]) -> np.ndarray:
        handle = Ref(OpaqueHandle())
        self.dispatcher.call(symbol, [(name, TEXT), (handle, HANDLE_REF)])
        return copy_from_handle(handle.value, dtype, shape)

    def get_int_values_1d(self, name: str) -> np.ndarray:
        shape = self._require_rank(name, 1)
        return self._get_array("get_1d_int", name, np.int32, shape)

    def get_double_values_1d(self, name: str) -> np.ndarray:
        shape = self._require_rank(name, 1)
        return self._get_array("get_1d_double", name, np.float64, shape)

    def get_int_values_2d(self, name: str) -> np.ndarray:
        shape = self._require_rank(name, 2)
        return self._get_array("get_2d_int", name, np.int32, shape)

    def set_double_value_1d_at_index(self, name: str, index: int, value: float) -> None:
        self.dispatcher.call(
            "set_1d_double_at_index",
            [(name, TEXT), (Ref(index), INT_REF), (Ref(value), DOUBLE_REF)],
        )
