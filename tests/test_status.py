"""
Status report tests.
"""

from pathlib import Path

import pytest

from conftest import ADDRESS_A
from viphash.core.hasher import ContentHasher
from viphash.core.schema import Verdict, VerdictRecord
from viphash.core.status import FileNode, FileStatus, StatusReport, StatusReporter, aggregate


def record(verdict, reviewer="alice"):
    return VerdictRecord(address=ADDRESS_A, reviewer=reviewer, verdict=verdict, recorded_at=1.0)


@pytest.fixture
def reporter(sqlite_store):
    return StatusReporter(sqlite_store, ContentHasher())


@pytest.fixture
def plugin(tmp_path):
    root = tmp_path / "plugin"
    (root / "sub").mkdir(parents=True)
    (root / "vendor").mkdir()
    (root / "foo.php").write_text("<?php echo 'foo';\n")
    (root / "sub" / "bar.js").write_text("var bar = 1;\n")
    (root / "notes.txt").write_text("not reviewed\n")
    (root / "vendor" / "lib.php").write_text("<?php echo 'lib';\n")
    return root


class TestAggregate:

    def test_no_verdicts_is_unknown(self):
        assert aggregate([]) == FileStatus.UNKNOWN

    def test_all_good(self):
        assert aggregate([record(Verdict.GOOD), record(Verdict.GOOD, "bob")]) == FileStatus.GOOD

    def test_first_bad_stays_bad(self):
        assert aggregate([record(Verdict.BAD), record(Verdict.GOOD, "bob")]) == FileStatus.BAD

    def test_later_bad_makes_mixed(self):
        assert aggregate([record(Verdict.GOOD), record(Verdict.BAD, "bob")]) == FileStatus.MIXED

    def test_describe_counts(self):
        node = FileNode(path=Path("plugin", "foo.php"), verdicts=[record(Verdict.GOOD), record(Verdict.BAD, "bob")])
        assert node.describe() == "foo.php - 1x true, 1x false"

    def test_describe_unknown(self):
        assert FileNode(path=Path("plugin", "foo.php")).describe() == "foo.php - 1x unknown"


class TestReport:

    def test_two_reviewers_disagree(self, reporter, sqlite_store, plugin):
        address = ContentHasher().hash_file(plugin / "foo.php")
        sqlite_store.save(address, "alice", Verdict.GOOD)
        sqlite_store.save(address, "bob", Verdict.BAD)

        report = reporter.report(plugin / "foo.php")

        assert report.lines == [(FileStatus.MIXED, "~ foo.php - 1x true, 1x false")]
        assert report.bad == 1
        assert report.summary() == "0.00% good, 100.00% bad, 0.00% unknown, 100.00% seen"

    def test_tree_skips_vendor_and_unsupported_files(self, reporter, sqlite_store, plugin):
        address = ContentHasher().hash_file(plugin / "foo.php")
        sqlite_store.save(address, "alice", Verdict.GOOD)

        report = reporter.report(plugin)

        assert [line for _, line in report.lines] == [
            "  " + str(plugin),
            "✓ ├───foo.php - 1x true",
            "  └───├ sub",
            "? |   └───bar.js - 1x unknown",
        ]
        assert (report.good, report.bad, report.unknown) == (1, 0, 1)
        assert report.summary() == "50.00% good, 0.00% bad, 50.00% unknown, 50.00% seen"

    def test_reformatted_file_keeps_its_verdict(self, reporter, sqlite_store, plugin):
        address = ContentHasher().hash_file(plugin / "foo.php")
        sqlite_store.save(address, "alice", Verdict.GOOD)
        (plugin / "foo.php").write_text("<?php\n\n  // reformatted\n  echo    'foo';\n")

        report = reporter.report(plugin / "foo.php")

        assert report.lines[0][0] == FileStatus.GOOD

    def test_empty_file_is_unknown(self, reporter, tmp_path):
        empty = tmp_path / "empty.php"
        empty.write_text("<?php\n// nothing yet\n")

        report = reporter.report(empty)

        assert report.lines == [(FileStatus.UNKNOWN, "? empty.php - 1x unknown")]
        assert report.unknown == 1

    def test_folder_without_reportable_files(self, reporter, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "readme.txt").write_text("hello")

        report = reporter.report(tmp_path / "docs")

        assert report.lines == []
        assert report.summary() == "0.00% good, 0.00% bad, 0.00% unknown, 0.00% seen"

    def test_files_without_extension_are_reported(self, reporter, sqlite_store, tmp_path):
        root = tmp_path / "tool"
        root.mkdir()
        (root / "console").write_text("#!/usr/bin/env php\n<?php run();\n")
        (root / ".htaccess").write_text("Deny from all\n")
        (root / "foo.php").write_text("<?php echo 'foo';\n")
        sqlite_store.save(ContentHasher().hash_file(root / "console"), "alice", Verdict.BAD)

        report = reporter.report(root)

        assert [line for _, line in report.lines] == [
            "  " + str(root),
            "x ├───console - 1x false",
            "? └───foo.php - 1x unknown",
        ]

    def test_skipped_directory_as_root(self, reporter, plugin):
        assert reporter.report(plugin / "vendor").lines == []


def test_summary_rounding():
    report = StatusReport(lines=[], good=1, bad=1, unknown=1)
    assert report.summary() == "33.33% good, 33.33% bad, 33.33% unknown, 66.67% seen"
