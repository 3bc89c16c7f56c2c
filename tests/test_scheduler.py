from __future__ import annotations

import time
from pathlib import Path

import pytest

from conftest import EventLog, FakeBundler, FakeTransformer
from distpipe.config.defaults import BASE_EXTERNALS
from distpipe.core.context import BundleEntry, CopySpec
from distpipe.core.events import PhaseCompleted, PhaseFailed, PhaseStarted, Warning
from distpipe.core.scheduler import (
    BuildError,
    Job,
    JobError,
    build,
    bundle_all,
    create_registry,
    precompile,
    run_concurrently,
)
from distpipe.core.stages import GROUPS_BY_NAME, StageGroup, StageSpec, check_disjoint_destinations
from distpipe.core.transform import run_group


def _tree(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.mark.integration
def test_full_build_produces_distribution_tree(make_context) -> None:
    ctx = make_context()

    result = build(ctx)

    dist = ctx.dist_dir
    for rel in [
        "bin/next",
        "cli/next-dev.js",
        "lib/a.js",
        "lib/a.js.map",
        "lib/util/b.js",
        "server/render.js",
        "client/index.js",
        "pages/_app.js",
        "pages/_error.js",
        "pages/_document.js",
        "build/polyfills/unfetch.js",
        "build/path-to-regexp.js",
        "compiled/semver/semver.js",
        "compiled/semver/package.json",
        "compiled/left-pad/left-pad.js",
    ]:
        assert (dist / rel).is_file(), rel
    assert (ctx.compiled_dir / "semver" / "LICENSE").is_file()
    assert result.bundles == 2
    assert result.files == 9
    assert result.version == ctx.version


@pytest.mark.integration
def test_compile_phase_starts_after_every_bundle_finished(make_context) -> None:
    events = EventLog()
    transformer = FakeTransformer()
    bundler = FakeBundler(delay=0.05)
    ctx = make_context(transformer=transformer, bundler=bundler, events=events)

    build(ctx)

    last_bundle = max(call["finished"] for call in bundler.calls)
    first_transform = min(call["started"] for call in transformer.calls)
    assert first_transform > last_bundle
    phases = [(type(event).__name__, event.phase_id) for event in events if hasattr(event, "phase_id")]
    assert phases == [
        ("PhaseStarted", "precompile"),
        ("PhaseCompleted", "precompile"),
        ("PhaseStarted", "compile"),
        ("PhaseCompleted", "compile"),
    ]


def test_precomputed_externals_are_identical_for_every_job(make_context) -> None:
    bundler = FakeBundler()
    ctx = make_context(bundler=bundler)

    precompile(ctx)

    by_entry = {call["entry"].stem: call["externals"] for call in bundler.calls}
    assert by_entry["semver"] == set(BASE_EXTERNALS) | {"left-pad"}
    assert by_entry["left-pad"] == set(BASE_EXTERNALS) | {"semver"}


def test_incremental_externals_grow_as_jobs_complete(make_context) -> None:
    bundler = FakeBundler()
    ctx = make_context(bundler=bundler, externals_policy="incremental", max_workers=1)
    registry = create_registry(ctx)
    assert "semver" not in registry

    precompile(ctx)

    by_entry = {call["entry"].stem: call["externals"] for call in bundler.calls}
    assert by_entry["semver"] == set(BASE_EXTERNALS)
    assert by_entry["left-pad"] == set(BASE_EXTERNALS) | {"semver"}


def test_unknown_externals_policy_is_rejected(make_context) -> None:
    ctx = make_context(externals_policy="lazy")
    with pytest.raises(ValueError, match="externals policy"):
        create_registry(ctx)


def test_first_failure_cancels_pending_jobs() -> None:
    ran: list[str] = []

    def fail() -> None:
        ran.append("a")
        raise RuntimeError("boom")

    def slow() -> None:
        ran.append("b")
        time.sleep(0.2)

    def never() -> None:
        ran.append("c")

    jobs = [Job("a", fail), Job("b", slow), Job("c", never)]
    with pytest.raises(JobError) as excinfo:
        run_concurrently(jobs, max_workers=1)

    assert excinfo.value.job_id == "a"
    assert "c" in excinfo.value.cancelled
    assert set(excinfo.value.cancelled) <= {"b", "c"}
    assert "c" not in ran


def test_bundle_failure_stops_before_compile(make_context) -> None:
    events = EventLog()
    transformer = FakeTransformer()
    ctx = make_context(transformer=transformer, bundler=FakeBundler(fail_on={"semver"}), events=events)

    with pytest.raises(BuildError) as excinfo:
        build(ctx)

    assert excinfo.value.phase == "precompile"
    failed = events.of(PhaseFailed)[0]
    assert failed.phase_id == "precompile"
    assert failed.error_code == "bundle_error"
    assert "bundle:semver" in failed.message
    assert transformer.calls == []
    assert not any(event.phase_id == "compile" for event in events.of(PhaseStarted))


def test_unresolvable_bundle_entry_fails_phase(make_context) -> None:
    ctx = make_context(bundles=[BundleEntry(package="does-not-exist")])
    with pytest.raises(BuildError, match="Cannot resolve entry module"):
        precompile(ctx)


def test_transform_failure_fails_compile_phase(make_context) -> None:
    events = EventLog()
    ctx = make_context(transformer=FakeTransformer(fail_on={"render.tsx"}), events=events)

    with pytest.raises(BuildError) as excinfo:
        build(ctx)

    assert excinfo.value.phase == "compile"
    assert events.of(PhaseCompleted)[-1].phase_id == "precompile"
    assert events.of(PhaseFailed)[0].error_code == "transform_error"


def test_group_writes_only_its_destination(make_context) -> None:
    ctx = make_context()

    results = run_group(GROUPS_BY_NAME["pages"], ctx)

    assert len(results) == 3
    assert {path.parent for path in (ctx.dist_dir.rglob("*"))} == {ctx.dist_dir, ctx.dist_dir / "pages"}


def test_overlapping_destinations_are_rejected() -> None:
    a = StageGroup("a", (StageSpec("a", "a/**/*", "build", "server"),))
    b = StageGroup("b", (StageSpec("b", "b/**/*", "build/polyfills", "server"),))
    with pytest.raises(ValueError, match="share destination"):
        check_disjoint_destinations((a, b))
    check_disjoint_destinations(tuple(GROUPS_BY_NAME.values()))


@pytest.mark.integration
def test_rebuild_is_byte_identical(make_context) -> None:
    ctx = make_context()
    build(ctx)
    first = _tree(ctx.dist_dir)

    build(make_context())

    assert _tree(ctx.dist_dir) == first


def test_release_build_removes_stale_output(make_context) -> None:
    ctx = make_context()
    stale = ctx.dist_dir / "stale.js"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    build(ctx)
    assert stale.exists()

    build(ctx, release=True)
    assert not stale.exists()


def test_missing_copy_source_is_a_warning(make_context) -> None:
    events = EventLog()
    ctx = make_context(events=events)
    ctx.copies = [CopySpec(destination=Path("build/polyfills/nomodule.js"), package="@next/polyfill-nomodule")]

    precompile(ctx)

    codes = [warning.code for warning in events.of(Warning)]
    assert codes.count("copy_source_missing") == 1
    assert not (ctx.dist_dir / "build" / "polyfills" / "nomodule.js").exists()


def test_bundle_only_pass_resets_compiled_dir(make_context) -> None:
    ctx = make_context()
    stale = ctx.compiled_dir / "old" / "index.js"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    assert bundle_all(ctx) == 2

    assert not stale.exists()
    assert (ctx.compiled_dir / "semver" / "semver.js").exists()
    assert not ctx.dist_dir.exists()
