"""Timestamped per-node and cluster-wide logs.

Every node gets its own `<node>.clog` file in the working directory; the cluster log usually goes
to stdout. Writes to a single log are serialized, so output of actions running concurrently is
never mixed within a line.
"""

import datetime
import io
import logging
import pathlib as pl
import sys
import threading
import traceback
import typing as tp

import castle.utils.types as ttypes
from castle.utils import configuration

LOGGER = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class _DevNull(io.RawIOBase):
    """Binary sink that discards everything."""

    def writable(self) -> bool:
        return True

    def write(self, b: tp.Any) -> int:
        return len(b)


class CastleLog:
    """Log sink with an always-on channel and a debug channel gated per instance."""

    def __init__(
        self,
        name: str,
        output: tp.BinaryIO | None,
        *,
        enable_debug: bool = False,
        owns_output: bool = True,
    ) -> None:
        self.name = name
        self.enable_debug = enable_debug
        self._output = output
        self._owns_output = owns_output
        self._lock = threading.Lock()

    @classmethod
    def from_file(
        cls, log_dir: ttypes.FileType, node_name: str, *, enable_debug: bool = False
    ) -> "CastleLog":
        """Open `<log_dir>/<node_name>.clog` in append mode."""
        log_path = pl.Path(log_dir) / f"{node_name}{configuration.NODE_LOG_SUFFIX}"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        out_fp = open(log_path, "ab")  # noqa: SIM115
        return cls(node_name, out_fp, enable_debug=enable_debug)

    @classmethod
    def from_stdout(cls, name: str, *, enable_debug: bool = False) -> "CastleLog":
        return cls(name, sys.stdout.buffer, enable_debug=enable_debug, owns_output=False)

    @classmethod
    def from_devnull(cls, name: str, *, enable_debug: bool = False) -> "CastleLog":
        return cls(name, _DevNull(), enable_debug=enable_debug)  # type: ignore[arg-type]

    @property
    def closed(self) -> bool:
        return self._output is None

    def write(self, buf: bytes) -> None:
        """Write raw bytes. Writes after `close` are dropped."""
        with self._lock:
            if self._output is None:
                return
            self._output.write(buf)
            self._output.flush()

    def print(self, text: str) -> None:
        """Write text prefixed with a timestamp."""
        prefix = datetime.datetime.now().strftime(TIMESTAMP_FORMAT)  # noqa: DTZ005
        self.write(f"{prefix} {text}".encode())
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("%s: %s", self.name, text.removesuffix("\n"))

    def printf(self, fmt: str, *args: tp.Any) -> None:
        self.print(fmt % args if args else fmt)

    def _log(self, msg: str, exc: BaseException | None) -> None:
        if exc is None:
            self.print(f"{msg}\n")
        else:
            tb_str = "".join(traceback.format_exception(exc))
            self.print(f"{msg}: {tb_str}")

    def info(self, msg: str, *, exc: BaseException | None = None) -> None:
        self._log(msg, exc)

    def warn(self, msg: str, *, exc: BaseException | None = None) -> None:
        self._log(msg, exc)

    def error(self, msg: str, *, exc: BaseException | None = None) -> None:
        self._log(msg, exc)

    def debug(self, msg: str, *, exc: BaseException | None = None) -> None:
        if self.enable_debug:
            self._log(msg, exc)

    def close(self) -> None:
        """Release the destination. Calling it again does nothing."""
        with self._lock:
            output, self._output = self._output, None
            if output is not None and self._owns_output:
                output.close()

    def __enter__(self) -> "CastleLog":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


def print_to_all(text: str, *logs: CastleLog) -> None:
    """Print the same text to several logs."""
    for log in logs:
        log.print(text)


def debug_to_all(text: str, *logs: CastleLog) -> None:
    """Print the same debug message to several logs."""
    for log in logs:
        log.debug(text)
