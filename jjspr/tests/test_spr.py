"""End-to-end tests of the sync engine against the in-memory fakes."""

import json
from pathlib import Path

import pytest

from jjspr.spr import StackedPR
from jjspr.spr.stack import STACK_COMMENT_MARKER, RowKind, RowState
from jjspr.typing import APIError, AmbiguousRemoteState, PushError, QueryError
from jjspr.tests.fakes import FakeGithub, FakeJJ, find_row, submit


def build_stack(fake_jj: FakeJJ) -> None:
    fake_jj.add_change("aaaaaaaaaaaa", "Add parser\n\nParses things.\n")
    fake_jj.add_change("bbbbbbbbbbbb", "Add evaluator\n")
    fake_jj.add_change("cccccccccccc", "WIP: add printer\n")


def read_state(workspace: Path) -> dict:
    return json.loads((workspace / ".jj" / "jjspr-state.json").read_text())


def test_first_submit_creates_chained_prs(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub,
                                          workspace: Path) -> None:
    """Test that a first submit creates chained PRs, comments and state."""
    build_stack(fake_jj)

    loaded = submit(spr)

    assert fake_jj.fetches == 1
    assert fake_jj.pushed == ["aaaaaaaaaaaa", "bbbbbbbbbbbb", "cccccccccccc"]
    a = fake_github.pull_for_branch("push-aaaaaaaa")
    b = fake_github.pull_for_branch("push-bbbbbbbb")
    c = fake_github.pull_for_branch("push-cccccccc")
    assert (a.base_ref, b.base_ref, c.base_ref) == ("main", "push-aaaaaaaa", "push-bbbbbbbb")
    assert (a.title, a.body) == ("Add parser", "Parses things.")
    assert not a.draft and not b.draft and c.draft

    for pr in (a, b, c):
        assert len(pr.comments) == 1
        body = pr.comments[0].body or ""
        assert body.startswith(STACK_COMMENT_MARKER)
        assert f"- #{c.number}" in body and f"- #{b.number}" in body and f"- #{a.number}" in body
        assert f"- #{pr.number} ←" in body
    assert c.comments[0].body.index(f"#{c.number}") < c.comments[0].body.index(f"#{a.number}")  # type: ignore[union-attr]

    state = read_state(workspace)
    assert state["entries"]["bbbbbbbbbbbb"] == {
        "prNumber": b.number, "branch": "push-bbbbbbbb", "state": "open", "title": "Add evaluator"}
    assert [r.state for r in loaded.stack.mutable_rows()] == [RowState.SUCCESS] * 3


def test_second_submit_finds_nothing_to_do(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub) -> None:
    """Test that resubmitting an unchanged stack writes nothing."""
    build_stack(fake_jj)
    submit(spr)
    writes_before = len(fake_github.writes())

    loaded = submit(spr)

    assert not loaded.needs_sync
    assert loaded.revisions_to_sync == []
    assert len(fake_github.writes()) == writes_before
    assert len(fake_jj.pushed) == 3


def test_comment_refresh_is_idempotent(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub) -> None:
    """Test that unchanged stack comments are not rewritten."""
    build_stack(fake_jj)
    submit(spr)
    loaded = spr.load()

    summary = spr.update_comments(loaded)

    assert summary.writes == 0
    assert summary.unchanged == 3


def test_amended_revision_is_pushed_and_updated(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub) -> None:
    """Test that only the amended revision is pushed and updated."""
    build_stack(fake_jj)
    submit(spr)
    fake_jj.describe("bbbbbbbbbbbb", "Add evaluator\n\nNow with docs.\n")

    loaded = spr.load()
    assert [c.change_id for c in loaded.revisions_to_sync] == ["bbbbbbbbbbbb"]

    outcome = spr.sync_revisions(loaded)
    assert outcome.error is None
    assert [r.created for r in outcome.results] == [False]
    assert fake_jj.pushed[-1] == "bbbbbbbbbbbb"
    assert fake_github.pull_for_branch("push-bbbbbbbb").body == "Now with docs."


def test_squash_merged_middle_revision(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub,
                                       workspace: Path) -> None:
    """Test that a merged middle PR is kept in the stack and its child is retargeted."""
    build_stack(fake_jj)
    submit(spr)
    b_number = fake_github.pull_for_branch("push-bbbbbbbb").number
    fake_github.merge(b_number)
    fake_jj.drop("bbbbbbbbbbbb")
    fake_jj.reparent("cccccccccccc", "aaaaaaaaaaaa")

    loaded = spr.load()

    assert loaded.store.is_merged("bbbbbbbbbbbb")
    assert loaded.plan.bases["cccccccccccc"] == "push-aaaaaaaa"
    merged_rows = [r for r in loaded.stack.rows if r.kind == RowKind.MERGED]
    assert [r.pr_number for r in merged_rows] == [b_number]

    spr.sync_revisions(loaded).raise_for_error()
    spr.update_comments(loaded)

    c = fake_github.pull_for_branch("push-cccccccc")
    assert c.base_ref == "push-aaaaaaaa"
    assert f"- #{b_number} (merged)" in (c.comments[-1].body or "")
    assert read_state(workspace)["entries"]["bbbbbbbbbbbb"]["state"] == "merged"


def test_closed_departed_pr_is_forgotten(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub) -> None:
    """Test that a closed PR whose change left the stack is forgotten."""
    build_stack(fake_jj)
    submit(spr)
    fake_github.close(fake_github.pull_for_branch("push-cccccccc").number)
    fake_jj.drop("cccccccccccc")

    loaded = spr.load()

    assert loaded.store.get("cccccccccccc") is None
    assert not loaded.needs_sync


def test_ambiguous_remote_state_aborts_before_push(spr: StackedPR, fake_jj: FakeJJ,
                                                   fake_github: FakeGithub) -> None:
    """Test that ambiguous remote state stops the run before any push."""
    build_stack(fake_jj)
    fake_github.repo.add_pull("One", head="push-aaaaaaaa")
    fake_github.repo.add_pull("Two", head="push-aaaaaaaa")

    with pytest.raises(AmbiguousRemoteState):
        submit(spr)
    assert fake_jj.pushed == []
    assert fake_github.writes() == []


def test_push_failure_stops_before_api_calls(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub,
                                             workspace: Path) -> None:
    """Test that a push failure stops the run before any API write."""
    build_stack(fake_jj)
    fake_jj.fail_push.add("bbbbbbbbbbbb")

    with pytest.raises(PushError):
        submit(spr)
    assert fake_jj.pushed == ["aaaaaaaaaaaa"]
    assert fake_github.writes() == []
    assert not (workspace / ".jj" / "jjspr-state.json").exists()


def test_api_failure_lets_other_tasks_finish(spr: StackedPR, fake_jj: FakeJJ, fake_github: FakeGithub,
                                             workspace: Path) -> None:
    """Test that one API failure does not cancel the other revisions."""
    build_stack(fake_jj)
    fake_github.fail_create_for.add("push-bbbbbbbb")

    loaded = spr.load()
    outcome = spr.sync_revisions(loaded)

    assert isinstance(outcome.error, APIError)
    assert [r.change_id for r in outcome.results] == ["aaaaaaaaaaaa", "bbbbbbbbbbbb", "cccccccccccc"]
    assert sorted(fake_github.calls_named("create_pull")) == ["push-aaaaaaaa", "push-cccccccc"]
    assert find_row(loaded.stack, "bbbbbbbbbbbb").state == RowState.ERROR
    with pytest.raises(APIError):
        outcome.raise_for_error()
    assert not (workspace / ".jj" / "jjspr-state.json").exists()


def test_query_failure_propagates(spr: StackedPR, fake_jj: FakeJJ) -> None:
    """Test that a jj query failure is raised from load."""
    fake_jj.fail_query = True
    with pytest.raises(QueryError):
        spr.load()


def test_undescribed_revision_is_shown_but_not_synced(spr: StackedPR, fake_jj: FakeJJ,
                                                      fake_github: FakeGithub) -> None:
    """Test that an undescribed revision is listed but gets no PR."""
    fake_jj.add_change("aaaaaaaaaaaa", "")
    fake_jj.add_change("bbbbbbbbbbbb", "Real change\n")

    loaded = submit(spr)

    assert fake_jj.pushed == ["bbbbbbbbbbbb"]
    assert fake_github.pull_for_branch("push-bbbbbbbb").base_ref == "main"
    assert [r.change_id for r in loaded.stack.mutable_rows()] == ["bbbbbbbbbbbb", "aaaaaaaaaaaa"]
