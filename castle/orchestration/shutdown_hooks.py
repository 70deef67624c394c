"""Compensating actions that run when an orchestration run ends.

Actions that create resources (containers, cloud instances, ...) register a shutdown hook before
doing so. The hooks run in reverse order of registration when the run ends and get the final
return code, so on failure they can destroy whatever was created and on success persist the final
state.
"""

import contextlib
import dataclasses
import enum
import logging
import signal
import threading
import types
import typing as tp

LOGGER = logging.getLogger(__name__)


class ReturnCode(enum.IntEnum):
    SUCCESS = 0
    FAILURE = 1


class ShutdownHook:
    """Named compensating unit.

    Hooks are identified by name; a stack holds at most one hook with a given name.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def run(self, return_code: ReturnCode) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


@dataclasses.dataclass
class RunOutcome:
    """Outcome of the run as known so far. Failure until told otherwise."""

    return_code: ReturnCode = ReturnCode.FAILURE


class ShutdownHookStack:
    """Stack of shutdown hooks owned by a single orchestration run."""

    def __init__(self) -> None:
        self._hooks: list[ShutdownHook] = []
        self._lock = threading.Lock()

    def add_hook_if_missing(self, hook: ShutdownHook) -> bool:
        """Register the hook unless a hook with the same name is already registered.

        Returns:
            bool: True if the hook was added.
        """
        with self._lock:
            if any(h.name == hook.name for h in self._hooks):
                return False
            self._hooks.append(hook)
        LOGGER.debug(f"Registered shutdown hook '{hook.name}'.")
        return True

    @property
    def hooks(self) -> tuple[ShutdownHook, ...]:
        """Registered hooks in order of registration."""
        with self._lock:
            return tuple(self._hooks)

    def run_hooks(self, return_code: ReturnCode) -> None:
        """Run and unregister all hooks, most recently added first.

        All hooks run even when some of them fail. The first error is re-raised at the end.
        """
        with self._lock:
            hooks = self._hooks[::-1]
            self._hooks.clear()

        first_err: Exception | None = None
        for hook in hooks:
            LOGGER.debug(f"Running shutdown hook '{hook.name}' with {return_code.name}.")
            try:
                hook.run(return_code)
            except Exception as exc:
                LOGGER.exception(f"Shutdown hook '{hook.name}' failed")
                if first_err is None:
                    first_err = exc

        if first_err is not None:
            raise first_err

    @contextlib.contextmanager
    def scope(self) -> tp.Iterator[RunOutcome]:
        """Run the hooks when the block exits - context manager.

        The hooks get `FAILURE` when an exception escapes the block or when the block didn't set
        `return_code` of the yielded outcome to `SUCCESS`.
        """
        outcome = RunOutcome()
        try:
            yield outcome
        except BaseException:
            with contextlib.suppress(Exception):
                self.run_hooks(ReturnCode.FAILURE)
            raise
        self.run_hooks(outcome.return_code)


@contextlib.contextmanager
def abort_on_signals(
    on_abort: tp.Callable[[], None],
    signals: tp.Iterable[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
) -> tp.Iterator[None]:
    """Call `on_abort` when any of the `signals` is received - context manager.

    Outside of the main thread signal handlers cannot be installed; the block then runs without
    them.
    """

    def _handler(signum: int, frame: types.FrameType | None) -> None:  # noqa: ARG001
        LOGGER.warning(f"Received {signal.Signals(signum).name}, aborting.")
        on_abort()

    orig_handlers = {}
    try:
        for sig in signals:
            orig_handlers[sig] = signal.signal(sig, _handler)
    except ValueError as exc:
        if "signal only works in main thread" not in str(exc):
            raise

    try:
        yield
    finally:
        for sig, orig_handler in orig_handlers.items():
            signal.signal(sig, orig_handler)
