"""Scheduling and parallel execution of actions.

The catalog of actions is expanded against the nodes of the cluster into a graph of executions.
An execution is a single action on a single node (or the action itself when it has no nodes).
Every execution of an action depends on every execution of each action matched by the action's
targets.

The graph is checked before anything runs: duplicate actions, targets that match no action,
unknown nodes and dependency cycles are fatal.

Executions are run by a pool of worker threads in topological order (Kahn's algorithm). When an
execution fails, its action is failed and everything that depends on it, directly or
transitively, is skipped. Independent parts of the graph keep running until there's nothing left
to run.
"""

import concurrent.futures
import dataclasses
import enum
import heapq
import logging
import threading
import time
import typing as tp

from castle.orchestration import action as action_mod
from castle.orchestration import cluster as cluster_mod
from castle.orchestration import errors
from castle.orchestration import shutdown_hooks
from castle.utils import castle_log
from castle.utils import configuration
from castle.utils import framework_log

LOGGER = logging.getLogger(__name__)


class Status(enum.StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclasses.dataclass(frozen=True, order=True)
class ExecutionKey:
    action_id: action_mod.ActionId
    # Empty for actions that don't run on any node
    node_name: str = ""

    def __str__(self) -> str:
        return f"{self.action_id}@{self.node_name}" if self.node_name else str(self.action_id)


@dataclasses.dataclass
class ExecutionResult:
    key: ExecutionKey
    status: Status = Status.PENDING
    # Values of `time.monotonic()`
    started: float | None = None
    finished: float | None = None
    error: BaseException | None = None
    # Upstream action that caused the skip; `None` when skipped because the run was aborted
    skipped_due_to: action_mod.ActionId | None = None


@dataclasses.dataclass
class ActionResult:
    action_id: action_mod.ActionId
    status: Status
    skipped_due_to: action_mod.ActionId | None = None


@dataclasses.dataclass
class ScheduleReport:
    actions: dict[action_mod.ActionId, ActionResult] = dataclasses.field(default_factory=dict)
    executions: dict[ExecutionKey, ExecutionResult] = dataclasses.field(default_factory=dict)
    aborted: bool = False

    def statuses(self) -> dict[action_mod.ActionId, Status]:
        return {a: r.status for a, r in self.actions.items()}

    def with_status(self, status: Status) -> list[action_mod.ActionId]:
        return sorted(a for a, r in self.actions.items() if r.status == status)

    @property
    def succeeded(self) -> bool:
        return not self.aborted and all(
            r.status == Status.SUCCEEDED for r in self.actions.values()
        )

    @property
    def return_code(self) -> shutdown_hooks.ReturnCode:
        if self.succeeded:
            return shutdown_hooks.ReturnCode.SUCCESS
        return shutdown_hooks.ReturnCode.FAILURE

    def summary(self) -> str:
        lines = []
        for action_id in sorted(self.actions):
            rec = self.actions[action_id]
            line = f"{action_id}: {rec.status}"
            if rec.status == Status.SKIPPED:
                cause = rec.skipped_due_to or "run aborted"
                line = f"{line} (due to {cause})"
            lines.append(line)
        return "\n".join(lines)


class ActionScheduler:
    """Resolve the action graph for a cluster and run it."""

    def __init__(
        self,
        cluster: cluster_mod.Cluster,
        actions: tp.Iterable[action_mod.Action],
        *,
        max_workers: int = 0,
    ) -> None:
        self.cluster = cluster
        self.max_workers = max_workers or configuration.WORKERS
        if self.max_workers < 1:
            msg = f"Invalid number of workers '{self.max_workers}': must be >= 1"
            raise ValueError(msg)

        self._abort_event = threading.Event()

        self.actions = self._index_actions(actions)
        self._check_nodes()
        self.dependencies = self._resolve_dependencies()
        self._check_cycles()

        self.executions: dict[ExecutionKey, action_mod.Action] = {}
        self._action_execs: dict[action_mod.ActionId, list[ExecutionKey]] = {}
        self._dependents: dict[ExecutionKey, list[ExecutionKey]] = {}
        self._in_degree: dict[ExecutionKey, int] = {}
        self._build_execution_graph()

    @staticmethod
    def _index_actions(
        actions: tp.Iterable[action_mod.Action],
    ) -> dict[action_mod.ActionId, action_mod.Action]:
        indexed: dict[action_mod.ActionId, action_mod.Action] = {}
        for action in actions:
            if action.id in indexed:
                msg = f"Action '{action.id}' is defined more than once."
                raise errors.DuplicateActionError(msg)
            indexed[action.id] = action
        return indexed

    def _check_nodes(self) -> None:
        nodes = self.cluster.nodes
        for action in self.actions.values():
            unknown = [n for n in action.node_names if n not in nodes]
            if unknown:
                msg = f"Action '{action.id}' refers to unknown node(s): {', '.join(unknown)}"
                raise errors.UnknownNodeError(msg)

    def _resolve_dependencies(self) -> dict[action_mod.ActionId, tuple[action_mod.ActionId, ...]]:
        """Expand targets of every action to concrete action IDs."""
        all_ids = sorted(self.actions)
        deps: dict[action_mod.ActionId, tuple[action_mod.ActionId, ...]] = {}
        for action_id in all_ids:
            resolved: dict[action_mod.ActionId, None] = {}
            for target in self.actions[action_id].targets:
                matched = [a for a in all_ids if a.matches(target)]
                if not matched:
                    msg = f"Action '{action_id}' depends on '{target}', which matches no action."
                    raise errors.MissingDependencyError(msg)
                resolved.update(dict.fromkeys(matched))
            deps[action_id] = tuple(resolved)
        return deps

    def _check_cycles(self) -> None:
        """Fail on the first dependency cycle found.

        The reported cycle reads as "depends on", e.g. `[a, b, a]` when `a` depends on `b`
        and `b` depends on `a`.
        """
        visited: set[action_mod.ActionId] = set()
        for root in sorted(self.actions):
            if root in visited:
                continue
            # Iterative DFS; `path` holds the current chain of dependencies
            path: list[action_mod.ActionId] = [root]
            stack = [iter(self.dependencies[root])]
            while stack:
                dep = next(stack[-1], None)
                if dep is None:
                    stack.pop()
                    visited.add(path.pop())
                    continue
                if dep in path:
                    raise errors.CycleError([*path[path.index(dep) :], dep])
                if dep in visited:
                    continue
                path.append(dep)
                stack.append(iter(self.dependencies[dep]))

    def _build_execution_graph(self) -> None:
        for action_id, action in self.actions.items():
            keys = [ExecutionKey(action_id, n) for n in action.node_names] or [
                ExecutionKey(action_id)
            ]
            self._action_execs[action_id] = keys
            for key in keys:
                self.executions[key] = action
                self._dependents[key] = []

        for action_id, dep_ids in self.dependencies.items():
            dependent_keys = self._action_execs[action_id]
            for dep_id in dep_ids:
                for dep_key in self._action_execs[dep_id]:
                    self._dependents[dep_key].extend(dependent_keys)
            in_degree = sum(len(self._action_execs[d]) for d in dep_ids)
            for key in dependent_keys:
                self._in_degree[key] = in_degree

    def abort(self) -> None:
        """Stop dispatching new executions. Executions in progress are allowed to finish."""
        self._abort_event.set()

    @property
    def aborted(self) -> bool:
        return self._abort_event.is_set()

    def _framework_logger(self) -> logging.Logger:
        return framework_log.framework_logger(self.cluster.env.working_directory)

    def _log_node(self, key: ExecutionKey) -> castle_log.CastleLog:
        if key.node_name:
            return self.cluster.node(key.node_name).log
        return self.cluster.cluster_log

    def _execute(self, key: ExecutionKey, result: ExecutionResult) -> None:
        """Run single execution. Called in a worker thread."""
        action = self.executions[key]
        node = self.cluster.node(key.node_name) if key.node_name else None
        self._log_node(key).debug(f"*** Starting {key}")
        result.started = time.monotonic()
        try:
            action.invoke(self.cluster, node)
        finally:
            result.finished = time.monotonic()

    def _skip_dependents(
        self, failed_key: ExecutionKey, results: dict[ExecutionKey, ExecutionResult]
    ) -> None:
        to_visit = list(self._dependents[failed_key])
        while to_visit:
            key = to_visit.pop()
            result = results[key]
            if result.status != Status.PENDING:
                continue
            result.status = Status.SKIPPED
            result.skipped_due_to = failed_key.action_id
            msg = f"*** Skipped {key}: depends on failed {failed_key.action_id}"
            self.cluster.cluster_log.info(msg)
            LOGGER.warning(msg)
            self._framework_logger().warning(msg)
            to_visit.extend(self._dependents[key])

    def _on_done(
        self,
        key: ExecutionKey,
        future: "concurrent.futures.Future[None]",
        results: dict[ExecutionKey, ExecutionResult],
        ready: list[tuple[int, ExecutionKey]],
        in_degree: dict[ExecutionKey, int],
    ) -> None:
        result = results[key]
        exc = future.exception()
        if exc is None:
            result.status = Status.SUCCEEDED
            self._log_node(key).debug(f"*** Finished {key}")
            LOGGER.debug(f"Execution '{key}' succeeded.")
            for dep_key in self._dependents[key]:
                in_degree[dep_key] -= 1
                if in_degree[dep_key] == 0 and results[dep_key].status == Status.PENDING:
                    heapq.heappush(ready, (self.executions[dep_key].priority, dep_key))
            return

        result.status = Status.FAILED
        result.error = exc
        msg = f"*** Failed {key}: {exc}"
        self._log_node(key).error(msg, exc=exc)
        if key.node_name:
            self.cluster.cluster_log.info(msg)
        LOGGER.error(msg, exc_info=exc)
        self._framework_logger().error(msg)
        self._skip_dependents(key, results)
        if isinstance(exc, errors.FatalActionError):
            LOGGER.error(f"Fatal failure of '{key}', no more actions will be started.")
            self.abort()

    def _make_report(self, results: dict[ExecutionKey, ExecutionResult]) -> ScheduleReport:
        report = ScheduleReport(executions=results, aborted=self.aborted)
        for action_id, keys in self._action_execs.items():
            exec_results = [results[k] for k in keys]
            statuses = {r.status for r in exec_results}
            skipped_due_to = None
            if Status.FAILED in statuses:
                status = Status.FAILED
            elif Status.SKIPPED in statuses:
                status = Status.SKIPPED
                skipped_due_to = next(
                    (r.skipped_due_to for r in exec_results if r.skipped_due_to), None
                )
            else:
                status = Status.SUCCEEDED
            report.actions[action_id] = ActionResult(
                action_id=action_id, status=status, skipped_due_to=skipped_due_to
            )
        return report

    def run(self) -> ScheduleReport:
        """Run all executions and return the report."""
        results = {k: ExecutionResult(key=k) for k in sorted(self.executions)}
        # The graph is reusable, every run counts down its own copy of the in-degrees
        in_degree = dict(self._in_degree)
        ready = [(self.executions[k].priority, k) for k, d in in_degree.items() if d == 0]
        heapq.heapify(ready)
        running: dict[concurrent.futures.Future[None], ExecutionKey] = {}

        LOGGER.info(
            f"Running {len(self.actions)} action(s) as {len(results)} execution(s) "
            f"with {self.max_workers} worker(s)."
        )
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="castle-action"
        ) as executor:
            while True:
                while ready and len(running) < self.max_workers and not self.aborted:
                    __, key = heapq.heappop(ready)
                    running[executor.submit(self._execute, key, results[key])] = key
                if not running:
                    break
                done, __ = concurrent.futures.wait(
                    running, return_when=concurrent.futures.FIRST_COMPLETED
                )
                for future in sorted(done, key=lambda f: running[f]):
                    self._on_done(running.pop(future), future, results, ready, in_degree)

        for result in results.values():
            if result.status == Status.PENDING:
                result.status = Status.SKIPPED
                msg = f"*** Skipped {result.key}: run aborted"
                self.cluster.cluster_log.info(msg)
                LOGGER.warning(msg)

        report = self._make_report(results)
        if report.succeeded:
            LOGGER.info("All actions succeeded.")
        else:
            LOGGER.error(f"Some actions didn't succeed:\n{report.summary()}")
        return report


def run_actions(
    cluster: cluster_mod.Cluster,
    actions: tp.Iterable[action_mod.Action],
    *,
    max_workers: int = 0,
) -> ScheduleReport:
    """Resolve and run the actions, aborting dispatch on SIGTERM or SIGINT."""
    scheduler = ActionScheduler(cluster, actions, max_workers=max_workers)
    with shutdown_hooks.abort_on_signals(scheduler.abort):
        return scheduler.run()
