"""
Tests for the Worker Manager.

This test suite covers:
1. Installing new plugins from real (local) git repositories
2. Updates with changelogs, and unchanged plugins
3. Diverged histories and failed clones
4. Orphan removal
5. Fault isolation between plugins
6. Activation links and persisted state

Upstream repositories are throwaway repos under tmp_path, cloned
through file:// URLs.
"""

import shutil
import threading
import time

import pytest

from cesto.plugin import git_ops
from cesto.plugin.git_ops import GitError
from cesto.plugin.manager import (
    Action,
    OutcomeStatus,
    WorkerManager,
    fan_out,
    probe_remote_heads,
)
from cesto.plugin.manifest import parse_manifest_text
from cesto.plugin.reconcile import reconcile
from cesto.plugin.state import InstalledRecord, StateStore, load_state, save_state

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def sync(settings, forest, probe=False):
    state = load_state(settings.state_file)
    heads = probe_remote_heads(forest, state, settings) if probe else None
    return WorkerManager(settings).run(reconcile(forest, state, heads), forest)


def outcome_for(report, name):
    matches = [outcome for outcome in report.outcomes if outcome.name == name]
    assert len(matches) == 1, matches
    return matches[0]


class TestFanOut:
    """Test the thread fan-out helper."""

    def test_runs_every_task(self):
        done = []
        lock = threading.Lock()

        def task(i):
            with lock:
                done.append(i)

        fan_out([lambda i=i: task(i) for i in range(10)])
        assert sorted(done) == list(range(10))

    def test_jobs_limit(self):
        """No more than `jobs` tasks should run at once."""
        active = 0
        peak = 0
        lock = threading.Lock()

        def task():
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1

        fan_out([task] * 6, jobs=2)
        assert peak <= 2

    def test_no_tasks(self):
        fan_out([])


@requires_git
class TestInstall:
    """Test first-time installs."""

    def test_install_tree(self, settings, upstream):
        """Every plugin is cloned, recorded and linked."""
        luar, peneira = upstream("luar"), upstream("peneira")
        forest = parse_manifest_text(
            f"""
[luar]
location = "{luar.url}"

[luar.peneira]
location = "{peneira.url}"
"""
        )

        report = sync(settings, forest)

        assert report.ok
        assert report.scheduled == 2
        assert [outcome.name for outcome in report.outcomes] == ["luar", "peneira"]
        for outcome in report.outcomes:
            assert outcome.action == Action.INSTALL
            assert outcome.status == OutcomeStatus.SUCCESS

        state = load_state(settings.state_file)
        assert state.names() == ["luar", "peneira"]
        assert state.get("luar").last_revision == luar.head()
        assert state.get("luar").location == luar.url
        assert state.get("peneira").resolved_path == settings.plugin_path("peneira")

        link = settings.link_path("peneira")
        assert link.is_symlink()
        assert link.resolve() == settings.plugin_path("peneira").resolve()
        assert not settings.plugin_path("luar").with_name("luar.cesto-tmp").exists()

    def test_second_run_does_nothing(self, settings, upstream):
        """With probing, an up-to-date tree schedules zero units."""
        repo = upstream("luar")
        forest = parse_manifest_text(f'[luar]\nlocation = "{repo.url}"\n')
        sync(settings, forest)

        report = sync(settings, forest, probe=True)

        assert report.scheduled == 0
        assert report.outcomes == []
        assert load_state(settings.state_file).get("luar").last_revision == repo.head()
        assert settings.link_path("luar").is_symlink()

    def test_link_follows_recorded_path(self, settings, upstream):
        """Activation links the checkout the state points at."""
        repo = upstream("luar")
        checkout = settings.data_dir / "moved" / "luar"
        git_ops.clone_plugin(repo.url, checkout, env=settings.env)
        record = InstalledRecord(
            name="luar",
            resolved_path=checkout,
            location=repo.url,
            last_revision=repo.head(),
        )
        save_state(settings.state_file, StateStore([record]))

        forest = parse_manifest_text(f'[luar]\nlocation = "{repo.url}"\n')
        report = sync(settings, forest, probe=True)

        assert report.ok
        assert report.scheduled == 0
        assert not settings.plugin_path("luar").exists()
        assert settings.link_path("luar").resolve() == checkout.resolve()

    def test_disabled_plugin_installed_not_linked(self, settings, upstream):
        parent, child = upstream("parent"), upstream("child")
        forest = parse_manifest_text(
            f"""
[parent]
location = "{parent.url}"
disabled = true

[parent.child]
location = "{child.url}"
"""
        )

        report = sync(settings, forest)

        assert report.ok
        assert settings.plugin_path("child").is_dir()
        assert not settings.link_path("parent").exists()
        assert not settings.link_path("child").exists()
        assert load_state(settings.state_file).get("child").disabled

    def test_bad_url_fails_alone(self, settings, upstream, tmp_path):
        good = upstream("good")
        missing = (tmp_path / "remotes" / "missing").as_uri()
        forest = parse_manifest_text(
            f'[bad]\nlocation = "{missing}"\n[good]\nlocation = "{good.url}"\n'
        )

        report = sync(settings, forest)

        assert not report.ok
        assert report.errors["bad"].kind == "fetch"
        assert report.errors["bad"].message.startswith("Failed to clone repository")
        assert outcome_for(report, "good").status == OutcomeStatus.SUCCESS
        state = load_state(settings.state_file)
        assert "bad" not in state
        assert "good" in state
        assert not settings.plugin_path("bad").exists()
        assert not settings.link_path("bad").exists()

    def test_local_plugin(self, settings, upstream, tmp_path):
        """Local plugins are linked in place and recorded without revision."""
        source = tmp_path / "src" / "mine"
        source.mkdir(parents=True)
        forest = parse_manifest_text(f'[mine]\nlocation = "{source}"\n')

        report = sync(settings, forest)

        assert report.ok
        assert report.scheduled == 0
        assert settings.link_path("mine").resolve() == source.resolve()
        record = load_state(settings.state_file).get("mine")
        assert record.is_local
        assert record.resolved_path == source

    def test_missing_local_path_is_reported(self, settings, upstream, tmp_path):
        repo = upstream("luar")
        forest = parse_manifest_text(
            f'[gone]\nlocation = "{tmp_path / "nowhere"}"\n[luar]\nlocation = "{repo.url}"\n'
        )

        report = sync(settings, forest)

        assert not report.ok
        assert report.errors["gone"].kind == "configuration"
        assert outcome_for(report, "gone").action == Action.CHECK
        assert outcome_for(report, "luar").status == OutcomeStatus.SUCCESS
        assert load_state(settings.state_file).names() == ["luar"]


@requires_git
class TestUpdate:
    """Test updates of installed plugins."""

    def test_update_with_changelog(self, settings, upstream):
        repo = upstream("luar")
        forest = parse_manifest_text(f'[luar]\nlocation = "{repo.url}"\n')
        sync(settings, forest)
        old_head = repo.head()

        repo.commit("Add fennel support")
        repo.commit("Fix interpreter detection")
        report = sync(settings, forest, probe=True)

        outcome = outcome_for(report, "luar")
        assert outcome.action == Action.UPDATE
        assert outcome.status == OutcomeStatus.SUCCESS
        assert [line.split(" ", 1)[1] for line in outcome.changelog] == [
            "Add fennel support",
            "Fix interpreter detection",
        ]
        assert report.changelogs == {"luar": list(outcome.changelog)}

        record = load_state(settings.state_file).get("luar")
        assert record.last_revision == repo.head()
        assert record.last_revision != old_head

    def test_update_without_probe_reports_no_change(self, settings, upstream):
        """Without a probe an up-to-date plugin is fetched and found current."""
        repo = upstream("luar")
        forest = parse_manifest_text(f'[luar]\nlocation = "{repo.url}"\n')
        sync(settings, forest)

        report = sync(settings, forest, probe=False)

        assert report.scheduled == 1
        assert outcome_for(report, "luar").status == OutcomeStatus.NO_CHANGE
        assert report.ok

    def test_diverged_history(self, settings, upstream):
        """A rewritten upstream fails the update and leaves the clone alone."""
        repo = upstream("luar")
        repo.commit("Second commit")
        forest = parse_manifest_text(f'[luar]\nlocation = "{repo.url}"\n')
        sync(settings, forest)
        installed = repo.head()

        repo.rewrite_last_commit("Rewritten")
        report = sync(settings, forest)

        assert report.errors["luar"].kind == "diverged"
        assert git_ops.current_revision(settings.plugin_path("luar")) == installed
        assert load_state(settings.state_file).get("luar").last_revision == installed
        assert settings.link_path("luar").is_symlink()

    def test_changed_url_reclones(self, settings, upstream):
        original, fork = upstream("luar"), upstream("luar-fork")
        sync(settings, parse_manifest_text(f'[luar]\nlocation = "{original.url}"\n'))

        report = sync(
            settings, parse_manifest_text(f'[luar]\nlocation = "{fork.url}"\n'), probe=True
        )

        assert outcome_for(report, "luar").action == Action.INSTALL
        record = load_state(settings.state_file).get("luar")
        assert record.location == fork.url
        assert record.last_revision == fork.head()
        assert git_ops.current_revision(settings.plugin_path("luar")) == fork.head()


@requires_git
class TestRemove:
    """Test orphan removal."""

    def test_orphans_removed(self, settings, upstream, tmp_path):
        """Orphaned clones are deleted, local directories are left alone."""
        gone, keep = upstream("gone"), upstream("keep")
        source = tmp_path / "src" / "mine"
        source.mkdir(parents=True)
        sync(
            settings,
            parse_manifest_text(
                f'[gone]\nlocation = "{gone.url}"\n[mine]\nlocation = "{source}"\n'
            ),
        )
        assert settings.plugin_path("gone").is_dir()

        report = sync(settings, parse_manifest_text(f'[keep]\nlocation = "{keep.url}"\n'))

        assert report.ok
        assert outcome_for(report, "gone").action == Action.REMOVE
        assert outcome_for(report, "mine").action == Action.REMOVE
        assert not settings.plugin_path("gone").exists()
        assert source.is_dir()
        assert load_state(settings.state_file).names() == ["keep"]

    def test_switch_to_local_removes_clone(self, settings, upstream, tmp_path):
        """A plugin moved to a local directory loses its clone, not its record."""
        repo = upstream("luar")
        source = tmp_path / "src" / "luar"
        source.mkdir(parents=True)
        sync(settings, parse_manifest_text(f'[luar]\nlocation = "{repo.url}"\n'))
        assert settings.plugin_path("luar").is_dir()

        report = sync(settings, parse_manifest_text(f'[luar]\nlocation = "{source}"\n'))

        assert report.ok
        assert outcome_for(report, "luar").action == Action.REMOVE
        assert not settings.plugin_path("luar").exists()
        assert source.is_dir()
        assert settings.link_path("luar").resolve() == source.resolve()
        record = load_state(settings.state_file).get("luar")
        assert record.is_local
        assert record.resolved_path == source

        other = tmp_path / "src" / "other"
        other.mkdir()
        report = sync(settings, parse_manifest_text(f'[other]\nlocation = "{other}"\n'))

        assert report.ok
        assert source.is_dir()
        assert sorted(path.name for path in settings.data_dir.iterdir()) == ["state.toml"]

    def test_clone_kept_while_local_directory_missing(self, settings, upstream, tmp_path):
        repo = upstream("luar")
        sync(settings, parse_manifest_text(f'[luar]\nlocation = "{repo.url}"\n'))

        report = sync(
            settings, parse_manifest_text(f'[luar]\nlocation = "{tmp_path / "nowhere"}"\n')
        )

        assert report.errors["luar"].kind == "configuration"
        assert settings.plugin_path("luar").is_dir()
        assert not load_state(settings.state_file).get("luar").is_local


@requires_git
class TestFaultIsolation:
    """Test that one plugin's failure never affects another."""

    def test_git_failure_isolated(self, settings, upstream, monkeypatch):
        repos = {name: upstream(name) for name in ("one", "broken", "three")}
        forest = parse_manifest_text(
            "".join(f'[{name}]\nlocation = "{repo.url}"\n' for name, repo in repos.items())
        )
        original_clone = git_ops.clone_plugin

        def flaky_clone(url, target, **kwargs):
            if target.name.startswith("broken"):
                raise GitError("network unreachable")
            return original_clone(url, target, **kwargs)

        monkeypatch.setattr(git_ops, "clone_plugin", flaky_clone)
        report = sync(settings, forest)

        assert list(report.errors) == ["broken"]
        assert "network unreachable" in report.errors["broken"].message
        assert load_state(settings.state_file).names() == ["one", "three"]
        assert settings.link_path("one").is_symlink()
        assert settings.link_path("three").is_symlink()

    def test_unexpected_exception_isolated(self, settings, upstream, monkeypatch):
        repos = {name: upstream(name) for name in ("one", "boom")}
        forest = parse_manifest_text(
            "".join(f'[{name}]\nlocation = "{repo.url}"\n' for name, repo in repos.items())
        )
        original_clone = git_ops.clone_plugin

        def exploding_clone(url, target, **kwargs):
            if target.name.startswith("boom"):
                raise RuntimeError("unexpected")
            return original_clone(url, target, **kwargs)

        monkeypatch.setattr(git_ops, "clone_plugin", exploding_clone)
        report = sync(settings, forest)

        assert report.errors["boom"].kind == "internal"
        assert outcome_for(report, "one").status == OutcomeStatus.SUCCESS
        assert "one" in load_state(settings.state_file)
