"""
Plugin Worker Manager.

This module runs the installs, updates and removals a reconciliation asks for.

Key features:
- One thread per plugin unit, units never wait on each other
- Fault isolation: a unit's exception becomes a failure outcome
- Thread-safe, append-only outcome aggregates
- Activation links in Kakoune's autoload directory
- Atomic state rewrite after every unit has finished
"""

import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from cesto.config import STAGING_SUFFIX, Settings
from cesto.core.utils import remove_tree
from cesto.plugin import git_ops
from cesto.plugin.errors import (
    DivergedHistoryError,
    FetchError,
    FilesystemError,
    PluginError,
    PluginFailure,
)
from cesto.plugin.git_ops import GitError
from cesto.plugin.reconcile import Classification, ClassifiedNode, Reconciliation
from cesto.plugin.state import InstalledRecord, StateStore, save_state
from cesto.plugin.tree import Forest, RemoteRepository

logger = logging.getLogger(__name__)


class Action(Enum):
    """Kind of work an outcome belongs to."""

    INSTALL = "install"
    UPDATE = "update"
    REMOVE = "remove"
    ACTIVATE = "activate"
    CHECK = "check"


class OutcomeStatus(Enum):
    """Outcome status enumeration."""

    SUCCESS = "success"
    NO_CHANGE = "no-change"
    FAILURE = "failure"


@dataclass(frozen=True)
class Outcome:
    """
    Result of one unit of work.

    Attributes:
        name: Plugin name
        action: What the unit did
        status: SUCCESS, NO_CHANGE or FAILURE
        changelog: Commit summaries pulled in by an update, oldest first
        failure: Failure details when status is FAILURE
        record: State record to persist after a successful unit
    """

    name: str
    action: Action
    status: OutcomeStatus
    changelog: tuple[str, ...] = ()
    failure: PluginFailure | None = None
    record: InstalledRecord | None = None

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILURE


class SyncedLog:
    """Append-only list guarded by a lock."""

    def __init__(self):
        self._items: list[Outcome] = []
        self._lock = threading.Lock()

    def append(self, outcome: Outcome) -> None:
        with self._lock:
            self._items.append(outcome)

    def snapshot(self) -> list[Outcome]:
        with self._lock:
            return list(self._items)


@dataclass
class Report:
    """
    Everything a run did, in declaration order.

    Attributes:
        outcomes: Outcomes ordered by the plugin's position in the tree,
            orphaned plugins last
        scheduled: Number of units that were run
        state: The state written at the end of the run
    """

    outcomes: list[Outcome] = field(default_factory=list)
    scheduled: int = 0
    state: StateStore = field(default_factory=StateStore)

    @property
    def changelogs(self) -> dict[str, list[str]]:
        return {
            outcome.name: list(outcome.changelog)
            for outcome in self.outcomes
            if not outcome.failed
        }

    @property
    def errors(self) -> dict[str, PluginFailure]:
        errors: dict[str, PluginFailure] = {}
        for outcome in self.outcomes:
            if outcome.failed and outcome.name not in errors:
                errors[outcome.name] = outcome.failure
        return errors

    @property
    def ok(self) -> bool:
        return not any(outcome.failed for outcome in self.outcomes)


def fan_out(tasks: list[Callable[[], None]], jobs: int = 0) -> None:
    """
    Run every task on its own thread and wait for all of them.

    Args:
        tasks: Callables to run; they must not raise
        jobs: Maximum tasks running at once (0 = no limit)

    Threads are daemons, so an interrupted join abandons in-flight work.
    """
    gate = threading.BoundedSemaphore(jobs) if jobs > 0 else None

    def _gated(task: Callable[[], None]) -> None:
        if gate is None:
            task()
            return
        with gate:
            task()

    threads = [
        threading.Thread(target=_gated, args=(task,), daemon=True, name=f"cesto-unit-{i}")
        for i, task in enumerate(tasks)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()


def probe_remote_heads(
    forest: Forest, state: StateStore, settings: Settings
) -> dict[str, str]:
    """
    Ask remotes for their current head, concurrently.

    Only plugins already installed from the same URL are probed. A probe
    that fails is left out of the result, so the plugin falls back to a
    regular update.

    Returns:
        Mapping of plugin name -> remote head revision
    """
    heads: dict[str, str] = {}
    lock = threading.Lock()

    def _probe(name: str, url: str) -> None:
        try:
            head = git_ops.remote_head(url, timeout=settings.git_timeout, env=settings.env)
        except GitError as e:
            logger.debug("Probe failed for %s: %s", name, e)
            return
        with lock:
            heads[name] = head

    tasks = []
    for node in forest.nodes():
        record = state.get(node.name)
        if not isinstance(node.location, RemoteRepository) or record is None:
            continue
        if record.location != node.location.url:
            continue
        tasks.append(lambda n=node.name, u=node.location.url: _probe(n, u))

    fan_out(tasks, settings.jobs)
    return heads


class WorkerManager:
    """
    Runs plugin units concurrently and persists the resulting state.

    Each unit owns exactly one plugin path, so units need no locking on the
    filesystem; only the outcome logs are shared.
    """

    def __init__(self, settings: Settings):
        """
        Initialize WorkerManager.

        Args:
            settings: Paths and tunables for this run
        """
        self.settings = settings
        self._changes = SyncedLog()
        self._errors = SyncedLog()

    def run(
        self,
        reconciliation: Reconciliation,
        forest: Forest,
        activate: bool = True,
        persist: bool = True,
    ) -> Report:
        """
        Execute every unit the reconciliation schedules.

        Args:
            reconciliation: Classified plugins and orphans
            forest: The plugin forest the reconciliation was computed from
            activate: Link enabled plugins into the autoload directory
            persist: Rewrite the state file once all units finished

        Returns:
            Report with one outcome per scheduled unit plus diagnostics
        """
        self._changes = SyncedLog()
        self._errors = SyncedLog()

        for name, failure in reconciliation.diagnostics.items():
            self._errors.append(Outcome(name, Action.CHECK, OutcomeStatus.FAILURE, failure=failure))

        tasks: list[Callable[[], None]] = []
        for entry in reconciliation.classified:
            if not entry.needs_work:
                continue
            if entry.classification == Classification.NEW:
                tasks.append(self._unit(entry.name, Action.INSTALL, lambda e=entry: self._install(e)))
            else:
                tasks.append(self._unit(entry.name, Action.UPDATE, lambda e=entry: self._update(e)))

        for record in [*reconciliation.retired, *reconciliation.orphans]:
            tasks.append(self._unit(record.name, Action.REMOVE, lambda r=record: self._remove(r)))

        logger.info("Running %d plugin units", len(tasks))
        fan_out(tasks, self.settings.jobs)

        # Every unit has reported back at this point.
        outcomes = self._changes.snapshot() + self._errors.snapshot()

        state = self.next_state(reconciliation, outcomes)

        if activate:
            outcomes.extend(self._activate(forest, outcomes, state))

        if persist:
            save_state(self.settings.state_file, state)

        return Report(
            outcomes=_in_declaration_order(outcomes, forest, reconciliation),
            scheduled=len(tasks),
            state=state,
        )

    def _unit(self, name: str, action: Action, work: Callable[[], Outcome]) -> Callable[[], None]:
        """Wrap a unit so that it always records exactly one outcome."""

        def _run() -> None:
            try:
                outcome = work()
            except PluginError as e:
                logger.info("%s: %s failed: %s", name, action.value, e.message)
                self._errors.append(
                    Outcome(name, action, OutcomeStatus.FAILURE, failure=PluginFailure.from_error(e))
                )
                return
            except OSError as e:
                logger.info("%s: %s failed: %s", name, action.value, e)
                self._errors.append(
                    Outcome(
                        name,
                        action,
                        OutcomeStatus.FAILURE,
                        failure=PluginFailure.from_error(FilesystemError(name, str(e))),
                    )
                )
                return
            except Exception as e:
                logger.exception("%s: unexpected error during %s", name, action.value)
                self._errors.append(
                    Outcome(name, action, OutcomeStatus.FAILURE, failure=PluginFailure("internal", str(e)))
                )
                return

            logger.info("%s: %s %s", name, action.value, outcome.status.value)
            self._changes.append(outcome)

        return _run

    def _install(self, entry: ClassifiedNode) -> Outcome:
        node = entry.node
        url = node.location.url
        target = self.settings.plugin_path(node.name)
        staging = target.with_name(target.name + STAGING_SUFFIX)

        try:
            if staging.exists():
                remove_tree(staging)
        except OSError as e:
            raise FilesystemError(node.name, f"could not clear {staging}: {e}") from e

        # Clone beside the old checkout so a failed clone leaves it usable.
        try:
            git_ops.clone_plugin(url, staging, timeout=self.settings.git_timeout, env=self.settings.env)
            revision = git_ops.current_revision(staging, timeout=self.settings.git_timeout, env=self.settings.env)
        except GitError as e:
            _discard(staging)
            raise FetchError(node.name, str(e)) from e

        try:
            if target.exists() or target.is_symlink():
                remove_tree(target)
            os.replace(staging, target)
        except OSError as e:
            _discard(staging)
            raise FilesystemError(node.name, f"could not move clone into {target}: {e}") from e

        record = InstalledRecord(
            name=node.name,
            resolved_path=target,
            location=url,
            last_revision=revision,
            disabled=node.disabled_effective,
        )
        return Outcome(node.name, Action.INSTALL, OutcomeStatus.SUCCESS, record=record)

    def _update(self, entry: ClassifiedNode) -> Outcome:
        node = entry.node
        path = entry.record.resolved_path
        timeout = self.settings.git_timeout
        env = self.settings.env

        try:
            old_revision = git_ops.current_revision(path, timeout=timeout, env=env)
            git_ops.fetch(path, timeout=timeout, env=env)
            upstream = git_ops.current_revision(path, git_ops.UPSTREAM, timeout=timeout, env=env)

            if upstream != old_revision:
                if not git_ops.is_ancestor(path, old_revision, upstream, timeout=timeout, env=env):
                    raise DivergedHistoryError(
                        node.name,
                        "local history diverged from upstream, the clone was left untouched",
                    )
                git_ops.fast_forward(path, timeout=timeout, env=env)

            new_revision = git_ops.current_revision(path, timeout=timeout, env=env)
            changelog = (
                git_ops.log_range(path, old_revision, new_revision, timeout=timeout, env=env)
                if new_revision != old_revision
                else []
            )
        except GitError as e:
            raise FetchError(node.name, str(e)) from e

        record = InstalledRecord(
            name=node.name,
            resolved_path=path,
            location=node.location.url,
            last_revision=new_revision,
            disabled=node.disabled_effective,
        )

        if new_revision == old_revision:
            return Outcome(node.name, Action.UPDATE, OutcomeStatus.NO_CHANGE, record=record)

        return Outcome(
            node.name,
            Action.UPDATE,
            OutcomeStatus.SUCCESS,
            changelog=tuple(changelog),
            record=record,
        )

    def _remove(self, record: InstalledRecord) -> Outcome:
        # Local directories belong to the user; only the record goes away.
        if record.is_local:
            return Outcome(record.name, Action.REMOVE, OutcomeStatus.SUCCESS)

        path = record.resolved_path
        if not _is_within(path, self.settings.data_dir):
            logger.warning(
                "%s: %s is outside %s, dropping the record only",
                record.name,
                path,
                self.settings.data_dir,
            )
            return Outcome(record.name, Action.REMOVE, OutcomeStatus.SUCCESS)

        try:
            if path.exists() or path.is_symlink():
                remove_tree(path)
        except OSError as e:
            raise FilesystemError(record.name, f"could not remove {path}: {e}") from e

        return Outcome(record.name, Action.REMOVE, OutcomeStatus.SUCCESS)

    def _activate(
        self, forest: Forest, outcomes: list[Outcome], state: StateStore
    ) -> list[Outcome]:
        """
        Link every enabled plugin that has code on disk into autoload.

        Links point at the path recorded in the new state, so a plugin whose
        update failed stays linked to its previous checkout.
        """
        already_failed = {outcome.name for outcome in outcomes if outcome.failed}
        results = []

        for node in forest.enabled_nodes():
            record = state.get(node.name)
            if record is None or record.is_local != node.is_local:
                continue
            if not record.resolved_path.is_dir():
                continue
            source = record.resolved_path

            link = self.settings.link_path(node.name)
            try:
                link.parent.mkdir(parents=True, exist_ok=True)
                if link.is_symlink():
                    link.unlink()
                os.symlink(source, link, target_is_directory=True)
            except OSError as e:
                if node.name in already_failed:
                    logger.debug("%s: not linked: %s", node.name, e)
                    continue
                error = FilesystemError(node.name, f"{e}: {link}")
                results.append(
                    Outcome(
                        node.name,
                        Action.ACTIVATE,
                        OutcomeStatus.FAILURE,
                        failure=PluginFailure.from_error(error),
                    )
                )

        return results

    def next_state(self, reconciliation: Reconciliation, outcomes: list[Outcome]) -> StateStore:
        """
        Compute the state to persist after a run.

        Args:
            reconciliation: The reconciliation the run executed
            outcomes: Every outcome the run produced

        Returns:
            StateStore in declaration order, orphans that failed to be
            removed kept last
        """
        unit_outcomes = {
            outcome.name: outcome
            for outcome in outcomes
            if outcome.action in (Action.INSTALL, Action.UPDATE, Action.REMOVE)
        }
        state = StateStore()

        for entry in reconciliation.classified:
            node = entry.node
            if node.name in reconciliation.diagnostics:
                # Keep tracking a clone until its local replacement shows up.
                previous = entry.record
                if previous is not None and not previous.is_local and previous.resolved_path.is_dir():
                    state.put(_with_disabled(previous, node.disabled_effective))
                continue

            if node.is_local:
                state.put(
                    InstalledRecord(
                        name=node.name,
                        resolved_path=node.location.path,
                        location=str(node.location.path),
                        disabled=node.disabled_effective,
                    )
                )
                continue

            outcome = unit_outcomes.get(node.name)
            if outcome is not None and not outcome.failed:
                state.put(outcome.record)
                continue

            # Unchanged, or failed with the previous artifact still in place.
            previous = entry.record
            if previous is not None and not previous.is_local and previous.resolved_path.is_dir():
                state.put(_with_disabled(previous, node.disabled_effective))

        for record in reconciliation.orphans:
            outcome = unit_outcomes.get(record.name)
            if outcome is not None and outcome.failed:
                state.put(record)

        return state


def _with_disabled(record: InstalledRecord, disabled: bool) -> InstalledRecord:
    if record.disabled == disabled:
        return record
    return InstalledRecord(
        name=record.name,
        resolved_path=record.resolved_path,
        location=record.location,
        last_revision=record.last_revision,
        disabled=disabled,
    )


def _in_declaration_order(
    outcomes: list[Outcome], forest: Forest, reconciliation: Reconciliation
) -> list[Outcome]:
    order = forest.declaration_order()
    for record in reconciliation.orphans:
        order.setdefault(record.name, len(order))

    # sorted() is stable, so outcomes for the same plugin keep their order.
    return sorted(outcomes, key=lambda outcome: order.get(outcome.name, len(order)))


def _is_within(path: Path, directory: Path) -> bool:
    try:
        resolved, root = path.resolve(), directory.resolve()
    except OSError:
        return False
    return resolved != root and resolved.is_relative_to(root)


def _discard(path: Path) -> None:
    try:
        if path.exists():
            remove_tree(path)
    except OSError as e:
        logger.warning("Could not clean up %s: %s", path, e)
