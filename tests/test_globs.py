from __future__ import annotations

import unittest

from govscan.globs import excludes_directory, glob_matches, is_admitted, is_excluded


class GlobTests(unittest.TestCase):
    def test_double_star_spans_directories(self) -> None:
        self.assertTrue(glob_matches("a/b/c.py", "**/*.py"))
        self.assertTrue(glob_matches("c.py", "**/*.py"))
        self.assertTrue(glob_matches("src/deep/x.txt", "src/**"))

    def test_single_star_stays_in_segment(self) -> None:
        self.assertTrue(glob_matches("src/app.py", "src/*.py"))
        self.assertFalse(glob_matches("src/pkg/app.py", "src/*.py"))

    def test_basename_glob_matches_at_any_depth(self) -> None:
        self.assertTrue(glob_matches("deploy/docker/Dockerfile", "Dockerfile"))
        self.assertTrue(glob_matches("a/b/settings.py", "*.py"))
        self.assertFalse(glob_matches("a/b/settings.pyc", "*.py"))

    def test_character_classes(self) -> None:
        self.assertTrue(glob_matches("v1.txt", "v[0-9].txt"))
        self.assertFalse(glob_matches("va.txt", "v[0-9].txt"))
        self.assertTrue(glob_matches("va.txt", "v[!0-9].txt"))

    def test_exclude_wins_over_include(self) -> None:
        self.assertFalse(is_admitted("vendor/lib.py", ["**/*.py"], ["vendor/**"]))
        self.assertTrue(is_admitted("src/lib.py", ["**/*.py"], ["vendor/**"]))

    def test_exclude_of_directory_name_covers_contents(self) -> None:
        self.assertTrue(is_excluded("node_modules/pkg/index.js", ["node_modules"]))
        self.assertFalse(is_excluded("src/index.js", ["node_modules"]))

    def test_excludes_directory(self) -> None:
        self.assertTrue(excludes_directory("vendor", ["vendor/**"]))
        self.assertTrue(excludes_directory("a/.git", [".git"]))
        self.assertFalse(excludes_directory("src", ["*.py"]))


if __name__ == "__main__":
    unittest.main()
