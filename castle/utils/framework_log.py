import functools
import logging
import pathlib as pl
import time

import castle.utils.types as ttypes
from castle.utils import configuration


def get_framework_log_path(working_dir: ttypes.FileType) -> pl.Path:
    return pl.Path(working_dir).expanduser().absolute() / configuration.FRAMEWORK_LOG_NAME


@functools.cache
def _framework_logger(log_path: pl.Path) -> logging.Logger:
    class UTCFormatter(logging.Formatter):
        converter = time.gmtime  # type: ignore[assignment]

    formatter = UTCFormatter("%(asctime)s %(levelname)s %(message)s")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path)
    handler.setFormatter(formatter)

    logger = logging.getLogger(f"castle.framework.{log_path}")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    # The same events are logged by the module loggers, don't print them twice
    logger.propagate = False

    return logger


def framework_logger(working_dir: ttypes.FileType) -> logging.Logger:
    """Get logger for the `castle.log` file in the working directory.

    The logger is shared by all runs in the working directory. It is used for logging (and later
    reporting) scheduler level events like a failed or skipped action.
    """
    return _framework_logger(get_framework_log_path(working_dir))
