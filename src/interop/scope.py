"""
src/interop/scope.py

Scoped acquisition of the process working directory.

Native libraries frequently resolve co-located resources (dependent DLLs,
configuration includes) relative to the current directory. The directory is
switched only inside a `with working_directory(...)` block and restored on
every exit path, including exceptions raised by the wrapped native call.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Iterator, Optional, Union

logger = logging.getLogger("BMI.Scope")

# os.chdir is process-global; switches and restores are serialised
_CWD_LOCK = RLock()


@contextmanager
def working_directory(path: Optional[Union[str, Path]]) -> Iterator[Path]:
    """
    Enters `path` for the duration of the block. An empty or None path keeps
    the current directory, so callers can pass `Path(p).parent` unconditionally.

    The process-wide lock is held until the directory is restored: scopes in
    other threads wait, while nested scopes in the same thread re-enter. The
    block must therefore be exited on the thread that entered it.
    """
    with _CWD_LOCK:
        original = Path.cwd()
        target = Path(path) if path else None
        if target is not None and str(target) not in ("", "."):
            logger.debug(f"Entering working directory {target}")
            os.chdir(target)

        try:
            yield Path.cwd()
        finally:
            if Path.cwd() != original:
                logger.debug(f"Restoring working directory {original}")
                os.chdir(original)
