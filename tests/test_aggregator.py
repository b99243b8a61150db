from __future__ import annotations

import random
import unittest

from govscan.aggregator import Aggregator, aggregate, dedupe, rollup_by_rule
from govscan.models import Finding


def _finding(rule_id: str, path: str, line: int, column: int = 1, repo: str = "repo") -> Finding:
    return Finding(rule_id, path, line, column, f"{path}:{line}", repo)


class DedupeTests(unittest.TestCase):
    def test_collapses_exact_duplicates_but_keeps_columns(self) -> None:
        findings = [
            _finding("r", "a.py", 1, 1),
            _finding("r", "a.py", 1, 1),
            _finding("r", "a.py", 1, 20),
        ]

        unique = dedupe(findings)

        self.assertEqual([(f.line_number, f.column_offset) for f in unique], [(1, 1), (1, 20)])

    def test_multiline_rules_count_a_line_once(self) -> None:
        findings = [_finding("pem", "k.pem", 3, 1), _finding("pem", "k.pem", 3, 9)]

        unique = dedupe(findings, multiline_rules=frozenset({"pem"}))

        self.assertEqual(len(unique), 1)
        self.assertEqual(unique[0].column_offset, 1)


class AggregateTests(unittest.TestCase):
    def test_counts_across_files(self) -> None:
        findings = [
            _finding("secret-pattern", "one.py", 4),
            _finding("secret-pattern", "two.py", 2),
            _finding("secret-pattern", "two.py", 9),
        ]

        results = aggregate(findings)
        result = results[("secret-pattern", "repo")]

        self.assertEqual(result.finding_count, 3)
        self.assertEqual(result.files_with_findings, 2)
        self.assertEqual(len(result.sample), 3)

    def test_groups_by_rule_and_repository(self) -> None:
        findings = [
            _finding("r1", "a.py", 1, repo="alpha"),
            _finding("r1", "a.py", 1, repo="beta"),
            _finding("r2", "a.py", 2, repo="alpha"),
        ]

        results = aggregate(findings)

        self.assertEqual(sorted(results), [("r1", "alpha"), ("r1", "beta"), ("r2", "alpha")])

    def test_sample_is_bounded_seeded_and_sorted(self) -> None:
        findings = [_finding("r", f"f{idx:03d}.py", idx % 7 + 1) for idx in range(200)]

        first = aggregate(findings, sample_size=10, seed=42)[("r", "repo")]
        shuffled = list(findings)
        random.Random(7).shuffle(shuffled)
        second = aggregate(shuffled, sample_size=10, seed=42)[("r", "repo")]
        other_seed = aggregate(findings, sample_size=10, seed=43)[("r", "repo")]

        self.assertEqual(first.finding_count, 200)
        self.assertEqual(len(first.sample), 10)
        self.assertEqual(first.sample, second.sample)
        self.assertNotEqual(first.sample, other_seed.sample)
        self.assertEqual(first.sample, sorted(first.sample, key=lambda f: (f.file_path, f.line_number)))
        self.assertGreaterEqual(first.finding_count, len(first.sample))

    def test_other_rules_do_not_shift_a_sample(self) -> None:
        base = [_finding("r", f"f{idx:03d}.py", 1) for idx in range(50)]
        extra = [_finding("noise", f"n{idx}.py", 1) for idx in range(30)]

        alone = aggregate(base, seed=1)[("r", "repo")].sample
        mixed = aggregate(base + extra, seed=1)[("r", "repo")].sample

        self.assertEqual(alone, mixed)

    def test_batches_merge_like_a_single_pass(self) -> None:
        findings = [_finding("r", f"f{idx}.py", idx + 1) for idx in range(25)]
        aggregator = Aggregator(sample_size=5, seed=3)
        aggregator.add_batch(findings[10:])
        aggregator.add_batch(findings[:10])
        aggregator.add_batch(findings[:3])

        self.assertEqual(aggregator.results(), aggregate(findings, sample_size=5, seed=3))
        self.assertEqual(len(aggregator.findings()), 25)

    def test_zero_sample_size(self) -> None:
        result = aggregate([_finding("r", "a.py", 1)], sample_size=0)[("r", "repo")]
        self.assertEqual(result.finding_count, 1)
        self.assertEqual(result.sample, [])

    def test_rollup_by_rule_sums_repositories(self) -> None:
        findings = [
            _finding("r1", "a.py", 1, repo="alpha"),
            _finding("r1", "b.py", 1, repo="beta"),
            _finding("r1", "c.py", 1, repo="beta"),
        ]

        rolled = rollup_by_rule(aggregate(findings), sample_size=2)

        self.assertEqual(rolled["r1"].finding_count, 3)
        self.assertEqual(len(rolled["r1"].sample), 2)
        self.assertEqual(rolled["r1"].sample, sorted(rolled["r1"].sample, key=lambda f: (f.repository_id, f.file_path)))

    def test_rollup_sample_draws_from_every_repository(self) -> None:
        findings = [
            _finding("r1", f"m{idx}.py", 1, repo=repo) for repo in ("alpha", "beta") for idx in range(20)
        ]
        results = aggregate(findings, sample_size=10, seed=42)

        first = rollup_by_rule(results, sample_size=10, seed=42)["r1"]
        second = rollup_by_rule(results, sample_size=10, seed=42)["r1"]

        self.assertEqual(first.finding_count, 40)
        self.assertEqual(len(first.sample), 10)
        self.assertEqual({finding.repository_id for finding in first.sample}, {"alpha", "beta"})
        self.assertEqual(first.sample, second.sample)


if __name__ == "__main__":
    unittest.main()
