"""
Basic Model Interface client for model engines shipped as shared libraries.

Built on src.interop: every BMI operation is a named native call.
"""

from .arrays import copy_from_handle
from .model import ModelLibrary

__all__ = [
    "ModelLibrary",
    "copy_from_handle",
]
