"""Apply engine module for infragraph.

Walks a resolved graph and hands each resource to the provisioner once all of
its dependencies are applied. Independent resources run concurrently on a
thread pool. A failed resource blocks everything downstream of it and nothing
else. Once dispatched, a provisioning call is always awaited; a timeout only
stops new work from being scheduled.

Resources still recorded in state but no longer declared are destroyed after
the apply phase, dependents first. The exception is an undeclared resource
that sits on a resource declared with deleteBeforeReplace: it is destroyed
before the apply phase starts, and if that fails the delete-before-replace
step of the resource it sits on is refused.
"""

import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from tqdm import tqdm

import modules.planner as planner
import modules.resolver as resolver
import modules.state as state_module
from modules.exceptions import InfraGraphError
from modules.provisioners.base import Provisioner
from modules.references import Reference, get_path, resolve
from modules.resource_graph import ResourceGraph, ResourceNode, ResourceStatus

logger = logging.getLogger(__name__)

# Scheduler bookkeeping states
_PENDING = "pending"
_RUNNING = "running"
_DONE = "done"
_FAILED = "failed"
_BLOCKED = "blocked"


class ApplyReport:
    """Partial-failure report of one apply or destroy run."""

    def __init__(self):
        self.applied: List[str] = []
        self.failed: Dict[str, str] = {}
        self.blocked: List[str] = []
        self.pending: List[str] = []
        self.destroyed: List[str] = []
        self.actions: Dict[str, str] = {}
        self.timed_out = False

    @property
    def ok(self) -> bool:
        return not (self.failed or self.blocked or self.pending)

    @property
    def partial(self) -> bool:
        return not self.ok

    def provisioned(self) -> List[str]:
        """Ids that caused at least one provisioner call."""
        return [rid for rid, action in self.actions.items() if action != planner.SAME]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "applied": list(self.applied),
            "failed": dict(self.failed),
            "blocked": list(self.blocked),
            "pending": list(self.pending),
            "destroyed": list(self.destroyed),
            "actions": dict(self.actions),
            "timed_out": self.timed_out,
            "ok": self.ok,
        }


class _ReplaceCleanupError(InfraGraphError):
    """Replacement is up but the old physical resource could not be deleted."""

    def __init__(self, message: str, outputs: Dict[str, Any], resolved: Dict[str, Any]):
        super().__init__(message)
        self.outputs = outputs
        self.resolved = resolved


class _DestroyedBeforeReplaceError(InfraGraphError):
    """The old physical resource is gone but its replacement failed."""


def run_schedule(
    ids: Sequence[str],
    waits_on: Dict[str, List[str]],
    task: Callable[[str], Any],
    parallelism: Optional[int] = None,
    deadline: Optional[float] = None,
    on_start: Optional[Callable[[str], None]] = None,
    on_success: Optional[Callable[[str, Any], None]] = None,
    on_failure: Optional[Callable[[str, BaseException], None]] = None,
    on_blocked: Optional[Callable[[str], None]] = None,
) -> Tuple[Dict[str, str], bool]:
    """Run task(id) for every id once everything it waits on is done.

    Args:
        ids: Node ids in the order ready nodes should be dispatched
        waits_on: id -> ids that must finish first. Ids outside `ids`
            count as already done.
        task: Work for one node, run on a worker thread
        parallelism: Maximum concurrent tasks, None for the whole ready set
        deadline: time.monotonic() value after which nothing new is started
        on_start, on_success, on_failure, on_blocked: Callbacks, always
            invoked from the calling thread

    Returns:
        (final bookkeeping state per id, whether the deadline was hit)
    """
    status = {node_id: _PENDING for node_id in ids}
    position = {node_id: i for i, node_id in enumerate(ids)}
    dependents: Dict[str, List[str]] = {node_id: [] for node_id in ids}
    for node_id in ids:
        for dep in waits_on.get(node_id, []):
            if dep in dependents:
                dependents[dep].append(node_id)

    in_flight: Dict[Any, str] = {}
    timed_out = False
    workers = parallelism or max(1, len(ids))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        while True:
            if deadline is not None and not timed_out and time.monotonic() >= deadline:
                timed_out = True
                logger.warning("Timeout reached, no further resources will be started")
            if not timed_out:
                for node_id in ids:
                    if parallelism and len(in_flight) >= parallelism:
                        break
                    if status[node_id] != _PENDING:
                        continue
                    if all(status.get(dep, _DONE) == _DONE for dep in waits_on.get(node_id, [])):
                        status[node_id] = _RUNNING
                        if on_start:
                            on_start(node_id)
                        in_flight[pool.submit(task, node_id)] = node_id
            if not in_flight:
                break

            wait_for = None
            if deadline is not None and not timed_out:
                wait_for = max(0.0, deadline - time.monotonic())
            finished, _ = wait(list(in_flight), timeout=wait_for, return_when=FIRST_COMPLETED)
            for future in sorted(finished, key=lambda f: position[in_flight[f]]):
                node_id = in_flight.pop(future)
                try:
                    result = future.result()
                except Exception as exc:
                    status[node_id] = _FAILED
                    logger.error(f"{node_id} failed: {exc}")
                    if on_failure:
                        on_failure(node_id, exc)
                    for downstream in resolver.transitive_dependents(node_id, dependents):
                        if status[downstream] == _PENDING:
                            status[downstream] = _BLOCKED
                            if on_blocked:
                                on_blocked(downstream)
                else:
                    status[node_id] = _DONE
                    if on_success:
                        on_success(node_id, result)
    return status, timed_out


def _output_lookup(graph: ResourceGraph) -> Callable[[Reference], Any]:
    def lookup(ref: Reference) -> Any:
        try:
            return get_path(graph.get(ref.resource_id).outputs, ref.path)
        except (KeyError, LookupError):
            raise InfraGraphError(
                f"Cannot resolve {ref.expression()}: output not produced",
                context={"reference": ref.expression()},
            )

    return lookup


def _apply_node(
    node: ResourceNode,
    provisioner: Provisioner,
    graph: ResourceGraph,
    prior: Optional[Dict[str, Any]],
    holder: Optional[str] = None,
) -> Tuple[str, Dict[str, Any], Dict[str, Any]]:
    """Resolve, diff and provision one node. Runs on a worker thread.

    holder names an undeclared resource that could not be removed and still
    depends on this node; it refuses a delete-before-replace.
    """
    resolved = resolve(node.properties, _output_lookup(graph))
    action = planner.diff_action(node, resolved, prior)
    logger.info(f"{action} {node.type} {node.id}")

    if action == planner.SAME:
        return action, dict(prior["outputs"]), resolved
    if action == planner.CREATE:
        outputs = provisioner.apply_resource(node.type, resolved, node.id)
        return action, outputs, resolved
    old_id = state_module.physical_id(prior, node.id)
    if action == planner.UPDATE:
        outputs = provisioner.apply_resource(node.type, resolved, node.id, current_id=old_id)
        return action, outputs, resolved

    # Replace
    if node.options.get("delete_before_replace"):
        if holder:
            raise InfraGraphError(
                f"cannot delete {old_id} before replacing it: "
                f"removed resource '{holder}' still depends on it",
                context={"resource": node.id},
            )
        provisioner.destroy_resource(old_id, prior.get("type"))
        try:
            outputs = provisioner.apply_resource(node.type, resolved, node.id)
        except Exception as exc:
            raise _DestroyedBeforeReplaceError(str(exc)) from exc
        return action, outputs, resolved
    outputs = provisioner.apply_resource(node.type, resolved, node.id)
    try:
        provisioner.destroy_resource(old_id, prior.get("type"))
    except Exception as exc:
        raise _ReplaceCleanupError(
            f"replacement created but old resource {old_id} could not be deleted: {exc}",
            outputs,
            resolved,
        ) from exc
    return action, outputs, resolved


def _sitting_on(
    undeclared: Dict[str, Dict[str, Any]],
    entries: Dict[str, Dict[str, Any]],
    targets: Set[str],
) -> Dict[str, Set[str]]:
    """Map each undeclared id to the targets it transitively depends on.

    Dependencies are followed through every recorded entry, declared or not.
    Undeclared ids that reach no target are left out.
    """
    reached: Dict[str, Set[str]] = {}
    for rid in undeclared:
        found: Set[str] = set()
        seen: Set[str] = set()
        queue = deque(entries[rid].get("dependencies", []))
        while queue:
            dep = queue.popleft()
            if dep in seen:
                continue
            seen.add(dep)
            if dep in targets:
                found.add(dep)
            queue.extend(entries.get(dep, {}).get("dependencies", []))
        if found:
            reached[rid] = found
    return reached


def _destroy_entries(
    entries: Dict[str, Dict[str, Any]],
    provisioner: Provisioner,
    report: ApplyReport,
    state: Optional[Dict[str, Any]] = None,
    parallelism: Optional[int] = None,
    deadline: Optional[float] = None,
    on_destroyed: Optional[Callable[[str], None]] = None,
) -> bool:
    """Destroy state entries dependents-first. Returns whether the deadline hit."""
    if not entries:
        return False
    ids = list(entries)
    deps = {
        rid: [d for d in entries[rid].get("dependencies", []) if d in entries]
        for rid in ids
    }
    order = list(reversed(resolver.topological_sort(ids, deps)))
    # A node may go once every node that depends on it is gone
    waits_on: Dict[str, List[str]] = {rid: [] for rid in ids}
    for rid, node_deps in deps.items():
        for dep in node_deps:
            waits_on[dep].append(rid)

    def task(rid: str) -> None:
        entry = entries[rid]
        logger.info(f"delete {entry.get('type')} {rid}")
        provisioner.destroy_resource(state_module.physical_id(entry, rid), entry.get("type"))

    def on_success(rid: str, _result: Any) -> None:
        report.destroyed.append(rid)
        report.actions[rid] = planner.DELETE
        if state is not None:
            state_module.forget_resource(state, rid)
        if on_destroyed:
            on_destroyed(rid)

    def on_failure(rid: str, exc: BaseException) -> None:
        report.failed[rid] = str(exc)

    def on_blocked(rid: str) -> None:
        report.blocked.append(rid)

    status, timed_out = run_schedule(
        order,
        waits_on,
        task,
        parallelism=parallelism,
        deadline=deadline,
        on_success=on_success,
        on_failure=on_failure,
        on_blocked=on_blocked,
    )
    report.pending.extend(rid for rid in order if status[rid] == _PENDING)
    return timed_out


def apply(
    order: List[ResourceNode],
    provisioner: Provisioner,
    graph: Optional[ResourceGraph] = None,
    state: Optional[Dict[str, Any]] = None,
    parallelism: Optional[int] = None,
    timeout: Optional[float] = None,
    show_progress: bool = False,
) -> ApplyReport:
    """Apply resources in dependency order.

    Args:
        order: Nodes from resolver.resolve()
        provisioner: External provisioning collaborator
        graph: Graph the nodes belong to (built from `order` when omitted)
        state: State dict from the last run; updated in place
        parallelism: Max concurrent provisioning calls, None = whole ready set
        timeout: Seconds after which no new resource is started
        show_progress: Display a tqdm progress bar

    Returns:
        ApplyReport listing applied, failed, blocked and pending resources
    """
    if graph is None:
        graph = ResourceGraph(nodes=order, reindex=False)
    if state is None:
        state = state_module.empty_state(graph.name)
    prior_resources = dict(state["resources"])
    report = ApplyReport()
    deadline = time.monotonic() + timeout if timeout else None

    ids = [node.id for node in order]
    waits_on = {node.id: node.dependencies for node in order}
    for node in order:
        if node.status == ResourceStatus.APPLIED:
            report.actions[node.id] = planner.SAME
        else:
            graph.set_status(node.id, ResourceStatus.PENDING)
    todo = [rid for rid in ids if graph.status_of(rid) != ResourceStatus.APPLIED]
    logger.info(f"Applying {len(todo)} of {len(ids)} resources")

    undeclared = {
        rid: entry for rid, entry in prior_resources.items() if rid not in graph
    }
    replaced_first = {
        node.id
        for node in order
        if node.options.get("delete_before_replace") and node.id in prior_resources
    }
    early = _sitting_on(undeclared, prior_resources, replaced_first)
    # Replaced node -> undeclared resource still sitting on it
    held: Dict[str, str] = {}

    progress = tqdm(total=len(todo), disable=not show_progress, leave=False, unit="res")

    def task(rid: str):
        return _apply_node(
            graph.get(rid), provisioner, graph, prior_resources.get(rid), held.get(rid)
        )

    def on_start(rid: str) -> None:
        graph.set_status(rid, ResourceStatus.APPLYING)
        progress.set_description(rid)

    def on_success(rid: str, result: Tuple[str, Dict[str, Any], Dict[str, Any]]) -> None:
        action, outputs, resolved = result
        node = graph.get(rid)
        graph.set_outputs(rid, outputs)
        graph.set_status(rid, ResourceStatus.APPLIED)
        report.actions[rid] = action
        state_module.record_resource(
            state, rid, node.type, resolved, outputs, node.dependencies
        )
        progress.update(1)

    def on_failure(rid: str, exc: BaseException) -> None:
        node = graph.get(rid)
        if isinstance(exc, _ReplaceCleanupError):
            # The replacement exists; remember it so the next run does not create another
            state_module.record_resource(
                state, rid, node.type, exc.resolved, exc.outputs, node.dependencies
            )
        elif isinstance(exc, _DestroyedBeforeReplaceError):
            # Nothing exists any more; the next run creates it from scratch
            state_module.forget_resource(state, rid)
        graph.set_status(rid, ResourceStatus.FAILED, str(exc))
        report.failed[rid] = str(exc)
        progress.update(1)

    def on_blocked(rid: str) -> None:
        graph.set_status(rid, ResourceStatus.BLOCKED)
        progress.update(1)

    try:
        if early:
            logger.info(f"Removing {', '.join(early)} before delete-before-replace")
            report.timed_out = _destroy_entries(
                {rid: undeclared[rid] for rid in early},
                provisioner,
                report,
                state,
                parallelism,
                deadline,
            )
            for rid, targets in early.items():
                if rid not in report.destroyed:
                    for target in targets:
                        held.setdefault(target, rid)

        if not report.timed_out:
            _, report.timed_out = run_schedule(
                todo,
                waits_on,
                task,
                parallelism=parallelism,
                deadline=deadline,
                on_start=on_start,
                on_success=on_success,
                on_failure=on_failure,
                on_blocked=on_blocked,
            )

        remaining = {rid: entry for rid, entry in undeclared.items() if rid not in early}
        if remaining and not report.timed_out:
            report.timed_out = _destroy_entries(
                remaining, provisioner, report, state, parallelism, deadline
            )
    finally:
        progress.close()

    for rid in ids:
        status = graph.status_of(rid)
        if status == ResourceStatus.APPLIED:
            report.applied.append(rid)
        elif status == ResourceStatus.BLOCKED:
            report.blocked.append(rid)
        elif status == ResourceStatus.PENDING:
            report.pending.append(rid)
    logger.info(
        f"Apply finished: {len(report.applied)} applied, {len(report.failed)} failed, "
        f"{len(report.blocked)} blocked, {len(report.pending)} pending"
    )
    return report


def destroy(
    target: Union[ResourceGraph, Dict[str, Any]],
    provisioner: Provisioner,
    state: Optional[Dict[str, Any]] = None,
    parallelism: Optional[int] = None,
    timeout: Optional[float] = None,
) -> ApplyReport:
    """Destroy resources in reverse dependency order.

    Args:
        target: An applied ResourceGraph, or a state dict
        provisioner: External provisioning collaborator
        state: State dict to update (defaults to target when it is a state)
        parallelism: Max concurrent deletions
        timeout: Seconds after which no new deletion is started

    Returns:
        ApplyReport with destroyed, failed, blocked and pending ids
    """
    report = ApplyReport()
    deadline = time.monotonic() + timeout if timeout else None
    on_destroyed = None

    if isinstance(target, ResourceGraph):
        graph = target
        known = (state or {}).get("resources", {})
        entries: Dict[str, Dict[str, Any]] = {}
        for node in graph:
            if node.status == ResourceStatus.APPLIED:
                entries[node.id] = {
                    "type": node.type,
                    "outputs": node.outputs,
                    "dependencies": node.dependencies,
                }
            elif node.id in known:
                entries[node.id] = known[node.id]

        def on_destroyed(rid: str) -> None:
            graph.set_outputs(rid, {})
            graph.set_status(rid, ResourceStatus.PENDING)

    else:
        if state is None:
            state = target
        entries = dict(target.get("resources", {}))

    report.timed_out = _destroy_entries(
        entries, provisioner, report, state, parallelism, deadline, on_destroyed
    )
    if state is not None and not state["resources"]:
        state["outputs"] = {}
    logger.info(
        f"Destroy finished: {len(report.destroyed)} destroyed, {len(report.failed)} failed"
    )
    return report
