"""Tests for rebasing stacks onto trunk."""

from typing import List

from jjspr.pretty import format_rebase_summary
from jjspr.spr.rebase import RootOutcome, RootState, sync_stacks
from jjspr.typing import ChangeID, RebaseResult, StackRoot
from jjspr.tests.fakes import FakeJJ


def root(change_id: str, description: str) -> StackRoot:
    return StackRoot(change_id=ChangeID(change_id), description=description)


def test_nothing_to_rebase(fake_jj: FakeJJ) -> None:
    """Test that no roots means already up to date."""
    summary = sync_stacks(fake_jj)
    assert fake_jj.fetches == 1
    assert summary.up_to_date
    assert fake_jj.rebased == []
    assert "Already up to date" in format_rebase_summary(summary)


def test_rebases_every_root_onto_trunk(fake_jj: FakeJJ) -> None:
    """Test that each root is rebased onto trunk()."""
    fake_jj.stack_roots = [root("aaaaaaaaaaaa", "Feature one\n"), root("bbbbbbbbbbbb", "Feature two\n")]

    summary = sync_stacks(fake_jj)

    assert fake_jj.rebased == [("aaaaaaaaaaaa", "trunk()"), ("bbbbbbbbbbbb", "trunk()")]
    assert summary.count(RootState.SUCCESS) == 2
    assert not summary.failed
    text = format_rebase_summary(summary)
    assert "Rebased onto main:" in text
    assert "2 stack(s) rebased successfully." in text


def test_skipped_conflicted_and_failed_roots(fake_jj: FakeJJ) -> None:
    """Test that one failing root does not stop the others."""
    fake_jj.stack_roots = [
        root("aaaaaaaaaaaa", "Landed already\n"),
        root("bbbbbbbbbbbb", "Conflicts\n"),
        root("cccccccccccc", "Broken\n"),
        root("dddddddddddd", ""),
    ]
    fake_jj.rebase_results["aaaaaaaaaaaa"] = RebaseResult(ChangeID("aaaaaaaaaaaa"), skipped_empty=True)
    fake_jj.rebase_results["bbbbbbbbbbbb"] = RebaseResult(ChangeID("bbbbbbbbbbbb"), has_conflict=True)
    fake_jj.rebase_errors.add("cccccccccccc")
    progress: List[RootOutcome] = []

    summary = sync_stacks(fake_jj, on_progress=progress.append)

    assert [o.state for o in summary.outcomes] == [
        RootState.SKIPPED, RootState.CONFLICT, RootState.ERROR, RootState.SUCCESS]
    assert len(fake_jj.rebased) == 4
    assert summary.failed
    assert [o.state for o in progress].count(RootState.IN_PROGRESS) == 4

    text = format_rebase_summary(summary)
    assert "aaaaaaaa Landed already  skipped (already in trunk)" in text
    assert "bbbbbbbb Conflicts  conflict" in text
    assert "dddddddd (no description)" in text
    assert "1 rebased, 1 skipped, 1 with conflicts, 1 failed." in text
