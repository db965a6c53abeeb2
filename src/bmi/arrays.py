"""
src/bmi/arrays.py

Bulk copy of callee-owned arrays into caller-owned numpy arrays.

An OpaqueHandle says nothing about how many elements sit behind it; the shape
always comes from a separate get_var_shape call. Elements are read in C
(row-major) order of the declared shape: for a (rows, cols) variable, element
[i, j] is at flat offset i * cols + j.
"""

import ctypes
import logging
from typing import Sequence

import numpy as np

from src.interop.descriptors import OpaqueHandle
from src.interop.errors import MarshalingError

logger = logging.getLogger("BMI.Arrays")


def copy_from_handle(handle: OpaqueHandle, dtype, shape: Sequence[int]) -> np.ndarray:
    """
    Copies `prod(shape)` elements of `dtype` starting at `handle`.

    Returns a new array; the native memory may be reused by the model after
    the next update.
    """
    dims = tuple(int(d) for d in shape)
    if any(d < 0 for d in dims):
        raise MarshalingError(f"Negative dimension in shape {dims}")

    dtype = np.dtype(dtype)
    count = int(np.prod(dims, dtype=np.int64)) if dims else 1
    if count == 0:
        return np.empty(dims, dtype=dtype)
    if handle.is_null:
        raise MarshalingError(f"Null array handle for shape {dims}")

    ctype = np.ctypeslib.as_ctypes_type(dtype)
    pointer = ctypes.cast(handle.address, ctypes.POINTER(ctype))
    logger.debug(f"Copying {count} x {dtype} from {handle.address:#x}")
    return np.ctypeslib.as_array(pointer, shape=dims).copy()
