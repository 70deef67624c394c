"""File locks shared by all castle processes working on the same working directory."""

import logging
import pathlib as pl

from filelock import FileLock

from castle.utils import configuration

# Suppress messages from filelock
logging.getLogger("filelock").setLevel(logging.WARNING)


def descriptor_lock(descriptor_path: pl.Path, *, timeout: float = 60) -> FileLock:
    """Return lock guarding writes of the cluster descriptor.

    Several castle runs can share a working directory (e.g. `up` in one terminal and `down` in
    another), so the descriptor must never be written by two processes at once.
    """
    lock_path = descriptor_path.with_name(
        f".{descriptor_path.name}{configuration.CLUSTER_LOCK_SUFFIX}"
    )
    return FileLock(lock_path, timeout=timeout)
