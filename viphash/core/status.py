"""
Status reports: walk a source tree, look up every file's verdicts and render
the result as a tree with a summary line.
"""

import os
import sqlite3
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .hasher import SUPPORTED_EXTENSIONS, ContentHasher, EmptyContentError, extension_of
from .records import IRecordStore
from .schema import Verdict, VerdictRecord
from ..util.logging import logger

SKIPPED_DIRECTORIES = {"vendor", ".git", ".svn", ".idea"}


class FileStatus(str, Enum):
    GOOD = "good"
    BAD = "bad"
    MIXED = "mixed"
    UNKNOWN = "unknown"

    @property
    def marker(self) -> str:
        return {"good": "✓ ", "bad": "x ", "mixed": "~ ", "unknown": "? "}[self.value]


def aggregate(verdicts: List[VerdictRecord]) -> FileStatus:
    """
    Fold a file's verdicts into one status.

    A BAD verdict is sticky: a file first judged BAD stays BAD, and a file
    judged GOOD that later picks up any BAD becomes MIXED.
    """
    if not verdicts:
        return FileStatus.UNKNOWN
    if verdicts[0].verdict == Verdict.BAD:
        return FileStatus.BAD
    if any(v.verdict == Verdict.BAD for v in verdicts):
        return FileStatus.MIXED
    return FileStatus.GOOD


@dataclass
class FileNode:
    path: Path
    verdicts: List[VerdictRecord] = field(default_factory=list)
    address: Optional[str] = None

    @property
    def status(self) -> FileStatus:
        return aggregate(self.verdicts)

    def describe(self) -> str:
        """'foo.php - 1x true, 1x false' style verdict counts."""
        if not self.verdicts:
            counts = ["1x unknown"]
        else:
            counter = Counter(v.verdict.value for v in self.verdicts)
            counts = [f"{count}x {value}" for value, count in counter.items()]
        return f"{self.path.name} - {', '.join(counts)}"


@dataclass
class Folder:
    name: str
    children: List[Union["Folder", FileNode]] = field(default_factory=list)


Node = Union[Folder, FileNode]


@dataclass
class StatusReport:
    lines: List[Tuple[Optional[FileStatus], str]]
    good: int = 0
    bad: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return self.good + self.bad + self.unknown

    def percentages(self) -> Tuple[float, float, float, float]:
        if not self.total:
            return 0.0, 0.0, 0.0, 0.0
        good = self.good / self.total * 100
        bad = self.bad / self.total * 100
        unknown = self.unknown / self.total * 100
        return good, bad, unknown, good + bad

    def summary(self) -> str:
        good, bad, unknown, seen = self.percentages()
        return f"{good:.2f}% good, {bad:.2f}% bad, {unknown:.2f}% unknown, {seen:.2f}% seen"


class StatusReporter:
    """Builds and renders verdict trees for a directory."""

    def __init__(self, store: IRecordStore, hasher: ContentHasher = None):
        self.store = store
        self.hasher = hasher or ContentHasher()

    def file_node(self, path: Path) -> FileNode:
        """Hash one file and collect its verdicts; failures leave it unknown."""
        try:
            address = self.hasher.hash_file(path)
        except EmptyContentError:
            return FileNode(path=path)
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            return FileNode(path=path)

        try:
            verdicts = self.store.get_all_for_address(address)
        except (sqlite3.Error, OSError, ValueError) as e:
            logger.warning(f"Could not look up verdicts for {path}: {e}")
            verdicts = []
        return FileNode(path=path, verdicts=verdicts, address=address)

    def build_tree(self, root: Union[str, Path]) -> Optional[Node]:
        """Walk root bottom-up; folders without reportable files are dropped."""
        root = Path(root)
        if root.name in SKIPPED_DIRECTORIES:
            return None

        if root.is_dir():
            try:
                entries = sorted(os.listdir(root))
            except OSError as e:
                logger.warning(f"Could not list {root}: {e}")
                return None
            children = []
            for entry in entries:
                child = self.build_tree(root / entry)
                if child is not None:
                    children.append(child)
            if not children:
                return None
            return Folder(name=str(root), children=children)

        # Files without an extension are reported and hashed as plain text
        extension = extension_of(root)
        if extension and extension not in SUPPORTED_EXTENSIONS:
            return None
        return self.file_node(root)

    def render(self, node: Node) -> List[Tuple[Optional[FileStatus], str]]:
        """Render a tree to (status, line) pairs; folder lines carry no status."""
        if isinstance(node, FileNode):
            return [(node.status, node.status.marker + node.describe())]
        lines = [(None, "  " + node.name)]
        lines.extend(self._render_children(node, 0))
        return lines

    def _render_children(self, folder: Folder, depth: int) -> List[Tuple[Optional[FileStatus], str]]:
        lines = []
        for i, child in enumerate(folder.children):
            last = i == len(folder.children) - 1
            prefix = "|   " * depth + ("└───" if last else "├───")
            if isinstance(child, Folder):
                lines.append((None, "  " + prefix + "├ " + Path(child.name).name))
                lines.extend(self._render_children(child, depth + 1))
            else:
                status = child.status
                lines.append((status, status.marker + prefix + child.describe()))
        return lines

    def report(self, root: Union[str, Path]) -> StatusReport:
        """Build, render and count a status report for root."""
        tree = self.build_tree(root)
        if tree is None:
            return StatusReport(lines=[])

        report = StatusReport(lines=self.render(tree))
        for status, _ in report.lines:
            if status is None:
                continue
            if status == FileStatus.GOOD:
                report.good += 1
            elif status == FileStatus.UNKNOWN:
                report.unknown += 1
            else:
                # BAD dominates, so mixed files count as bad
                report.bad += 1
        return report
