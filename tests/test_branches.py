from __future__ import annotations

import pytest

from timekeeper_mcp.tracking import BranchAutomation, is_timer_running


@pytest.fixture
def branches(tracker) -> BranchAutomation:
    return BranchAutomation(tracker)


def _branch_timer(tracker, name):
    timer = tracker.store.find_branch_timer(name)
    return tracker.get_timer(timer.id) if timer else None


def test_first_checkout_creates_branch_timer(tracker, branches) -> None:
    timer = branches.handle_checkout("feature/login")

    assert timer is not None
    assert timer.label == "Branch: feature/login"
    assert timer.branch_name == "feature/login"
    [session] = timer.subtimers
    assert session.label == "Session 1:"
    assert session.end_time is None
    created_at = next(i for i, line in enumerate(timer.logs) if line.endswith('Branch timer created for "feature/login"'))
    assert timer.logs[created_at + 1].endswith('Branch checked out: "feature/login"')
    assert branches.current_branch == "feature/login"


def test_switching_branches_round_trip(tracker, branches, clock) -> None:
    branches.handle_checkout("main")
    clock.advance(minutes=5)
    branches.handle_checkout("feature")
    clock.advance(minutes=5)
    branches.handle_checkout("main")

    main = _branch_timer(tracker, "main")
    feature = _branch_timer(tracker, "feature")
    assert [session.label for session in main.subtimers] == ["Session 1:", "Session 2:"]
    assert main.subtimers[0].total_elapsed_time == 300_000
    assert is_timer_running(main)
    assert not is_timer_running(feature)
    assert feature.subtimers[0].total_elapsed_time == 300_000
    assert main.logs[-2].endswith('Branch switched from "feature" to "main"')
    assert feature.logs[-1].endswith('Branch switched from "feature" to "main"')


def test_checkout_leaves_manual_timers_running(tracker, branches) -> None:
    manual = tracker.start_timer("Email")
    branches.handle_checkout("feature")
    running = {timer.id for timer in tracker.running_timers()}
    assert manual.id in running
    assert _branch_timer(tracker, "feature").id in running


def test_checkout_of_known_branch_without_previous_logs_checkout(tracker, branches) -> None:
    branches.handle_checkout("main")
    restarted = BranchAutomation(tracker)
    restarted.handle_checkout("main")
    main = _branch_timer(tracker, "main")
    assert sum(line.endswith('Branch checked out: "main"') for line in main.logs) == 2
    assert len(main.subtimers) == 2


@pytest.mark.parametrize(
    "configure",
    [
        lambda tracker: tracker.set_enabled(False),
        lambda tracker: tracker.set_auto_create_on_branch_checkout(False),
        lambda tracker: tracker.set_ignored_branches(["main"]),
    ],
)
def test_checkout_noops(tracker, branches, persistence, configure) -> None:
    configure(tracker)
    saves = persistence.saves
    assert branches.handle_checkout("main") is None
    assert tracker.store.find_branch_timer("main") is None
    assert persistence.saves == saves


def test_checkout_same_branch_is_noop(tracker, branches, persistence) -> None:
    branches.handle_checkout("main")
    saves = persistence.saves
    assert branches.handle_checkout("main") is None
    assert persistence.saves == saves


def test_commit_closes_session_and_opens_next(tracker, branches, clock) -> None:
    branches.handle_checkout("main")
    clock.advance(minutes=20)

    next_session = branches.handle_commit("Fix login bug\n\nLonger body")

    main = _branch_timer(tracker, "main")
    first, second = main.subtimers
    assert first.label == "Session 1 - Commit: Fix login bug"
    assert first.end_time == clock.now
    assert first.total_elapsed_time == 1_200_000
    assert second.id == next_session.id
    assert second.label == "Session 2:"
    assert second.end_time is None
    assert any(line.endswith('Commit: "Fix login bug"') for line in main.logs)


def test_commit_uses_session_count_when_label_has_no_number(tracker, branches) -> None:
    branches.handle_checkout("main")
    main = tracker.store.find_branch_timer("main")
    tracker.edit_subtimer(main.id, main.subtimers[0].id, {"label": "Design spike"})

    branches.handle_commit("Prototype")

    assert _branch_timer(tracker, "main").subtimers[0].label == "Session 1 - Commit: Prototype"


def test_commit_without_tracked_branch_or_running_session(tracker, branches) -> None:
    assert branches.handle_commit("nothing") is None
    branches.handle_checkout("main")
    main = tracker.store.find_branch_timer("main")
    tracker.stop_timer(main.id)
    assert branches.handle_commit("paused") is None


def test_reconcile_startup_creates_missing_branch_timer(tracker, branches) -> None:
    timer = branches.reconcile_startup("develop")
    assert timer is not None and timer.branch_name == "develop"
    assert is_timer_running(_branch_timer(tracker, "develop"))
    assert branches.current_branch == "develop"


def test_reconcile_startup_resumes_existing_branch(tracker, branches, clock) -> None:
    branches.handle_checkout("develop")
    clock.advance(minutes=1)
    tracker.stop_all_timers()
    clock.advance(hours=12)

    restarted = BranchAutomation(tracker)
    restarted.reconcile_startup("develop")

    develop = _branch_timer(tracker, "develop")
    assert len(develop.subtimers) == 1
    assert develop.subtimers[0].last_resume_time == clock.now
    assert develop.subtimers[0].total_elapsed_time == 60_000
    assert is_timer_running(develop)
    assert any(line.endswith("Opened and started") for line in develop.logs)


def test_reconcile_startup_on_ignored_branch_only_records_it(tracker, branches) -> None:
    tracker.set_ignored_branches(["main"])
    assert branches.reconcile_startup("main") is None
    assert branches.current_branch == "main"
    assert tracker.store.find_branch_timer("main") is None
