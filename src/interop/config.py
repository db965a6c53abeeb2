"""
src/interop/config.py

Handle-level configuration of the invocation layer.

The values here are fixed when a library is opened and are read without
locking afterwards. Defaults match the Fortran-friendly conventions of most
BMI model libraries: 1024-character NUL-padded strings and at most 6 dims.
"""

import codecs
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime

from dotenv import load_dotenv

from .descriptors import CallingConvention, CharSet

# Load environment variables
load_dotenv()

logger = logging.getLogger("BMI.Config")

MAXSTRLEN = 1024
MAXDIMS = 6


def _env_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {raw!r}")


@dataclass(frozen=True)
class InteropConfig:
    """
    Configuration shared by every thunk generated under one library handle.
    """
    max_string_length: int = MAXSTRLEN
    max_dims: int = MAXDIMS
    fill_char: str = "\0"
    codec: str = "utf-8"  # only used for CharSet.ANSI
    calling_convention: CallingConvention = CallingConvention.CDECL
    charset: CharSet = CharSet.ANSI
    chdir_on_load: bool = True
    epoch: datetime = field(default_factory=lambda: datetime(1, 1, 1))

    def __post_init__(self):
        if self.max_string_length < 1:
            raise ValueError(f"max_string_length must be positive, got {self.max_string_length}")
        if self.max_dims < 1:
            raise ValueError(f"max_dims must be positive, got {self.max_dims}")
        if len(self.fill_char) != 1:
            raise ValueError(f"fill_char must be a single character, got {self.fill_char!r}")
        codecs.lookup(self.codec)  # LookupError for unknown codecs
        if self.charset is CharSet.ANSI:
            try:
                width = len(self.fill_char.encode(self.codec))
            except UnicodeEncodeError as e:
                raise ValueError(f"fill_char {self.fill_char!r} is not encodable as {self.codec}") from e
            if width != 1:
                raise ValueError(f"fill_char {self.fill_char!r} is {width} bytes in {self.codec}, expected 1")

    @classmethod
    def from_env(cls, **overrides) -> "InteropConfig":
        """
        Builds a configuration from BMI_* environment variables (.env aware).
        Explicit keyword overrides win over the environment.
        """
        values = {}
        if "BMI_MAX_STRLEN" in os.environ:
            values["max_string_length"] = int(os.environ["BMI_MAX_STRLEN"])
        if "BMI_MAX_DIMS" in os.environ:
            values["max_dims"] = int(os.environ["BMI_MAX_DIMS"])
        if "BMI_FILL_CHAR" in os.environ:
            values["fill_char"] = os.environ["BMI_FILL_CHAR"] or "\0"
        if "BMI_CODEC" in os.environ:
            values["codec"] = os.environ["BMI_CODEC"]
        if "BMI_CALLING_CONVENTION" in os.environ:
            values["calling_convention"] = CallingConvention(os.environ["BMI_CALLING_CONVENTION"].lower())
        if "BMI_CHARSET" in os.environ:
            values["charset"] = CharSet(os.environ["BMI_CHARSET"].lower())
        if "BMI_CHDIR_ON_LOAD" in os.environ:
            values["chdir_on_load"] = _env_bool(os.environ["BMI_CHDIR_ON_LOAD"])

        values.update(overrides)
        logger.debug(f"Configuration from environment: {values}")
        return cls(**values)
