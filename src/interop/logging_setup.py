"""
src/interop/logging_setup.py

The package only creates named loggers under "BMI.*" and never installs
handlers. Embedding applications that want the standard console/file output
call configure_logging() once at start-up.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: int = logging.INFO, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Configures logging to the console and, optionally, a file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)
    return logging.getLogger("BMI")
