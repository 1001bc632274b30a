"""Tests for harvesting and merging."""

from pathlib import Path

import pytest

from git_timeline.exceptions import NoContributorMatch
from git_timeline.filters import PassthroughFilter, PatternFilter
from git_timeline.harvester import CommitRecord, Harvester
from git_timeline.merger import merge

from .conftest import BASE, ME, OTHER


class SkipAll:
    """Filter that drops every commit."""

    def check(self):
        pass

    def transform(self, message):
        return None


class CountingFilter(PassthroughFilter):
    def __init__(self):
        self.calls = []

    def transform(self, message):
        self.calls.append(message)
        return message


def record(timestamp: int, message: str, label: str = "alpha") -> CommitRecord:
    return CommitRecord(
        timestamp=timestamp,
        raw_subject=message,
        source_label=label,
        filtered_message=message,
    )


class TestHarvester:
    """Tests for Harvester."""

    def test_single_repository(self, make_source):
        """Test labels and ordering for one repository."""
        alpha = make_source("alpha", [(BASE + 100, "fix bug", ME), (BASE + 200, "add feature", ME)])

        records = Harvester(PassthroughFilter()).harvest([str(alpha)], [ME])

        assert [(r.timestamp, r.filtered_message) for r in records] == [
            (BASE + 100, "[alpha] fix bug"),
            (BASE + 200, "[alpha] add feature"),
        ]
        assert records[0].raw_subject == "fix bug"
        assert records[0].source_label == "alpha"
        assert records[0].composed == "[alpha] fix bug"

    def test_filter_called_once_per_commit(self, make_source):
        """Test that the filter sees each composed message exactly once."""
        alpha = make_source("alpha", [(BASE + 100, "fix bug", ME), (BASE + 200, "add feature", ME)])
        counting = CountingFilter()

        Harvester(counting).harvest([str(alpha)], [ME])

        assert counting.calls == ["[alpha] fix bug", "[alpha] add feature"]

    def test_filtered_messages_dropped(self, make_source):
        """Test that skipped commits never become records."""
        alpha = make_source("alpha", [(BASE + 100, "Merge branch dev", ME), (BASE + 200, "fix", ME)])

        records = Harvester(PatternFilter(skip_patterns=["merge"])).harvest([str(alpha)], [ME])

        assert [r.filtered_message for r in records] == ["[alpha] fix"]

    def test_since_excludes_older(self, make_source):
        """Test that commits before the lower bound are not harvested."""
        alpha = make_source("alpha", [(BASE + 100, "old", ME), (BASE + 200, "new", ME)])

        records = Harvester(PassthroughFilter()).harvest([str(alpha)], [ME], since=BASE + 101)

        assert [r.timestamp for r in records] == [BASE + 200]

    def test_invalid_repository_skipped(self, make_source, temp_dir: Path):
        """Test that a bad path is skipped with a warning, not fatal."""
        alpha = make_source("alpha", [(BASE + 100, "fix bug", ME)])
        missing = str(temp_dir / "missing")

        harvester = Harvester(PassthroughFilter())
        records = harvester.harvest([missing, str(alpha)], [ME])

        assert len(records) == 1
        assert harvester.skipped == [missing]
        assert harvester.warnings

    def test_repositories_concatenated_in_order(self, make_source):
        """Test that repos are harvested in configured order, unsorted."""
        alpha = make_source("alpha", [(BASE + 150, "a", ME)])
        beta = make_source("beta", [(BASE + 120, "b", ME)])

        records = Harvester(PassthroughFilter()).harvest([str(alpha), str(beta)], [ME])

        assert [r.source_label for r in records] == ["alpha", "beta"]

    def test_no_contributor_match_warns(self, make_source):
        """Test the default, informational contributor check."""
        alpha = make_source("alpha", [(BASE + 100, "theirs", OTHER)])

        harvester = Harvester(PassthroughFilter())
        records = harvester.harvest([str(alpha)], [ME])

        assert records == []
        assert any(OTHER in w for w in harvester.warnings)

    def test_no_contributor_match_strict(self, make_source):
        """Test that strict checking aborts the harvest."""
        alpha = make_source("alpha", [(BASE + 100, "theirs", OTHER)])

        with pytest.raises(NoContributorMatch) as exc_info:
            Harvester(PassthroughFilter(), contributor_check="strict").harvest([str(alpha)], [ME])
        assert exc_info.value.contributors == {OTHER}

    def test_contributor_check_off(self, make_source):
        """Test that the check can be disabled."""
        alpha = make_source("alpha", [(BASE + 100, "theirs", OTHER)])

        harvester = Harvester(PassthroughFilter(), contributor_check="off")
        harvester.harvest([str(alpha)], [ME])

        assert harvester.warnings == []
        assert harvester.contributors == {}

    def test_verbose_records_contributors(self, make_source):
        """Test that verbose mode collects each repo's contributors."""
        alpha = make_source("alpha", [(BASE + 1, "a", ME), (BASE + 2, "b", OTHER)])

        harvester = Harvester(PassthroughFilter(), verbose=True)
        harvester.harvest([str(alpha)], [ME])

        assert harvester.contributors == {"alpha": {ME, OTHER}}


class TestMerge:
    """Tests for merge."""

    def test_empty(self):
        """Test that merging nothing yields nothing."""
        assert merge([]) == []

    def test_sorted_by_timestamp(self):
        """Test the order law."""
        merged = merge([record(300, "c"), record(100, "a"), record(200, "b")])
        timestamps = [r.timestamp for r in merged]
        assert timestamps == sorted(timestamps)

    def test_dedup_keeps_first(self):
        """Test the dedup law on (timestamp, message)."""
        first = record(100, "[alpha] fix", label="alpha")
        second = record(100, "[alpha] fix", label="alpha-copy")

        merged = merge([first, second])

        assert merged == [first]
        assert merged[0].source_label == "alpha"

    def test_same_timestamp_different_message_kept(self):
        """Test that only exact duplicates are dropped."""
        merged = merge([record(100, "a"), record(100, "b")])
        assert [r.filtered_message for r in merged] == ["a", "b"]

    def test_ties_keep_input_order(self):
        """Test that equal timestamps stay in harvest order."""
        merged = merge([record(200, "z"), record(100, "y"), record(200, "x")])
        assert [r.filtered_message for r in merged] == ["y", "z", "x"]

    def test_skipped_records_dropped(self):
        """Test that records without a filtered message are not merged."""
        skipped = CommitRecord(timestamp=100, raw_subject="s", source_label="alpha")
        assert merge([skipped, record(200, "kept")]) == [record(200, "kept")]

    def test_two_repositories_interleaved(self, make_source):
        """Test the beta@120 before alpha@150 example."""
        alpha = make_source("alpha", [(BASE + 150, "a", ME)])
        beta = make_source("beta", [(BASE + 120, "b", ME)])

        merged = merge(Harvester(PassthroughFilter()).harvest([str(alpha), str(beta)], [ME]))

        assert [(r.source_label, r.timestamp) for r in merged] == [
            ("beta", BASE + 120),
            ("alpha", BASE + 150),
        ]

    def test_idempotent_harvest(self, make_source):
        """Test that harvest+merge is repeatable on unchanged sources."""
        alpha = make_source("alpha", [(BASE + 100, "a", ME), (BASE + 200, "b", ME)])
        beta = make_source("beta", [(BASE + 100, "c", ME)])
        repos = [str(alpha), str(beta)]

        first = merge(Harvester(PassthroughFilter()).harvest(repos, [ME]))
        second = merge(Harvester(PassthroughFilter()).harvest(repos, [ME]))

        assert first == second

    def test_redundant_emails_deduplicated(self, make_source):
        """Test that the same email configured twice doesn't duplicate records."""
        alpha = make_source("alpha", [(BASE + 100, "a", ME)])

        merged = merge(Harvester(PassthroughFilter()).harvest([str(alpha)], [ME, ME.upper()]))

        assert len(merged) == 1

    def test_skip_all_filter(self, make_source):
        """Test that a filter skipping everything leaves nothing to merge."""
        alpha = make_source("alpha", [(BASE + 100, "a", ME), (BASE + 200, "b", ME)])
        assert merge(Harvester(SkipAll()).harvest([str(alpha)], [ME])) == []
