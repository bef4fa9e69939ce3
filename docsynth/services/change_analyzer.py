"""Classifies a code change set by documentation impact.

Pure: no network, no LLM, no database. The pipeline feeds it the PR file
list; the drift monitor reuses ``categorize_file`` and the API-change types.
"""

import logging
import re
from typing import Any, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ChangeValidationError
from ..models.change_analysis import ChangePriority
from ..schemas.changes import (
    API_CHANGE_TYPES,
    NEW_API_TYPES,
    ChangeAnalysisResult,
    DocumentationImpact,
    FileCategory,
    FileChange,
    SemanticChange,
    SemanticChangeType,
)
from .patch_parser import SemanticExtractor

logger = logging.getLogger(__name__)

TEST_FILE_PATTERNS = [
    re.compile(r"\.test\.[jt]sx?$"),
    re.compile(r"\.spec\.[jt]sx?$"),
    re.compile(r"\.stories\.[jt]sx?$"),
    re.compile(r"\.e2e\.[jt]sx?$"),
    re.compile(r"(^|/)__tests__/"),
    re.compile(r"(^|/)tests?/"),
    re.compile(r"(^|/)test_[^/]*\.py$"),
    re.compile(r"_test\.(py|go)$"),
]

GENERATED_FILE_PATTERNS = [
    re.compile(r"generated", re.IGNORECASE),
    re.compile(r"\.gen\.[jt]sx?$"),
    re.compile(r"\.d\.ts$"),
    re.compile(r"(^|/)node_modules/"),
    re.compile(r"(^|/)dist/"),
    re.compile(r"(^|/)build/"),
    re.compile(r"\.min\.[jt]s$"),
    re.compile(r"(^|/)(package-lock\.json|yarn\.lock|pnpm-lock\.yaml|poetry\.lock|Cargo\.lock|go\.sum)$"),
]

# Matched against the file name only.
CONFIG_FILE_PATTERNS = [
    re.compile(r"^\..*rc(\.json)?$"),
    re.compile(r"^tsconfig.*\.json$"),
    re.compile(r"^(jest|vite|webpack|rollup|babel|eslint)\.config"),
    re.compile(r".*\.config\.[cm]?[jt]s$"),
    re.compile(r"\.(json|ya?ml|toml|ini|cfg|env)$"),
    re.compile(r"^\."),
]

SOURCE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs", ".java", ".rb")

USER_FACING_PATH = re.compile(r"(^|/)(api|apis|routes?|cli|commands?|handlers?|controllers?|endpoints?)(/|\.|$)")

# Volume above which an otherwise quiet change still warrants documentation.
LARGE_CHANGE_LINES = 500

_DRIVING = (FileCategory.SOURCE, FileCategory.DOCS)


def categorize_file(path: str) -> FileCategory:
    filename = path.rsplit("/", 1)[-1]
    if any(p.search(path) for p in TEST_FILE_PATTERNS):
        return FileCategory.TEST
    if any(p.search(path) for p in GENERATED_FILE_PATTERNS):
        return FileCategory.GENERATED
    if path.lower().endswith(SOURCE_EXTENSIONS):
        return FileCategory.SOURCE
    if filename.lower().endswith(".md"):
        return FileCategory.OTHER if "changelog" in filename.lower() else FileCategory.DOCS
    if any(p.search(filename) for p in CONFIG_FILE_PATTERNS):
        return FileCategory.CONFIG
    return FileCategory.OTHER


def is_user_facing(change: SemanticChange, path: str) -> bool:
    if change.type in (SemanticChangeType.API_CHANGE, SemanticChangeType.NEW_ENDPOINT):
        return True
    location = change.location.file if change.location else path
    return bool(USER_FACING_PATH.search(location))


def calculate_priority(changes: List[FileChange]) -> ChangePriority:
    driving = [c for c in changes if c.category in _DRIVING]
    if not driving:
        return ChangePriority.NONE

    semantic = [s for c in driving for s in c.semantic_changes]
    if any(s.breaking or (s.type == SemanticChangeType.REMOVAL and s.exported) for s in semantic):
        return ChangePriority.CRITICAL

    if any(s.exported and s.type in API_CHANGE_TYPES for s in semantic):
        return ChangePriority.HIGH

    if sum(c.total_lines for c in driving) > LARGE_CHANGE_LINES:
        return ChangePriority.MEDIUM

    return ChangePriority.LOW


def assess_documentation_impact(changes: List[FileChange], priority: ChangePriority,
                                requires_documentation: bool) -> DocumentationImpact:
    affected: List[str] = []
    new_docs: List[str] = []

    def _add(target: List[str], name: str) -> None:
        if name not in target:
            target.append(name)

    for change in changes:
        if change.category not in _DRIVING:
            continue
        exported = [s for s in change.semantic_changes if s.exported]
        lowered = change.path.lower()
        if "index" in lowered or "main" in lowered or any(s.type in NEW_API_TYPES for s in exported):
            _add(affected, "README.md")
        if any(s.type in API_CHANGE_TYPES for s in exported):
            _add(affected, "api-reference")
        if any(s.type in NEW_API_TYPES for s in exported):
            _add(new_docs, "api-reference")

    if requires_documentation:
        _add(affected, "CHANGELOG.md")

    return DocumentationImpact(
        affected_docs=affected,
        new_docs_needed=new_docs,
        update_priority=priority,
    )


def summarize(changes: List[FileChange], priority: ChangePriority) -> str:
    additions = sum(c.additions for c in changes)
    deletions = sum(c.deletions for c in changes)
    markers = [s.description or f"{s.type.value} {s.name}" for c in changes for s in c.semantic_changes]
    text = f"{len(changes)} file(s) (+{additions}/-{deletions}), priority {priority.value}"
    if markers:
        shown = "; ".join(markers[:3])
        more = f" (+{len(markers) - 3} more)" if len(markers) > 3 else ""
        text += f": {shown}{more}"
    return text


class ChangeAnalyzer:
    """Computes priority and ``requires_documentation`` for a change set.

    When an extractor is given, files that carry a patch but no semantic
    markers get markers derived from the patch first.
    """

    def __init__(self, extractor: Optional[SemanticExtractor] = None) -> None:
        self.extractor = extractor

    def analyze(self, changes: Iterable[Union[FileChange, dict, Any]]) -> ChangeAnalysisResult:
        files = self._validate(changes)

        for change in files:
            if self.extractor is not None and change.patch and not change.semantic_changes:
                change.semantic_changes = self.extractor.extract(change.path, change.patch)
            change.category = categorize_file(change.path)

        priority = calculate_priority(files)
        user_facing = any(
            is_user_facing(s, c.path)
            for c in files if c.category in _DRIVING
            for s in c.semantic_changes
        )
        requires_documentation = priority.rank >= ChangePriority.MEDIUM.rank or user_facing

        result = ChangeAnalysisResult(
            changes=files,
            priority=priority,
            requires_documentation=requires_documentation,
            documentation_impact=assess_documentation_impact(files, priority, requires_documentation),
            summary=summarize(files, priority),
        )
        logger.info(
            "Change analysis complete",
            extra={"files": len(files), "priority": priority.value,
                   "requires_documentation": requires_documentation},
        )
        return result

    @staticmethod
    def _validate(changes: Iterable[Any]) -> List[FileChange]:
        if changes is None or isinstance(changes, (str, bytes, dict)):
            raise ChangeValidationError("change set must be a list of file changes")

        files: List[FileChange] = []
        seen = set()
        for index, raw in enumerate(changes):
            try:
                if isinstance(raw, FileChange):
                    change = raw.model_copy(deep=True)
                else:
                    change = FileChange.model_validate(raw)
            except PydanticValidationError as e:
                first = e.errors()[0]
                loc = ".".join(str(p) for p in first.get("loc", ()))
                raise ChangeValidationError(
                    f"Invalid file change at index {index}: {loc} {first.get('msg')}",
                    field=f"changes[{index}].{loc}" if loc else f"changes[{index}]",
                ) from e
            if change.path in seen:
                raise ChangeValidationError(f"Duplicate file change for {change.path}",
                                            field=f"changes[{index}].path")
            seen.add(change.path)
            files.append(change)
        return files
