"""Tests for change classification and priority rules."""

import pytest

from docsynth.exceptions import ChangeValidationError
from docsynth.models.change_analysis import ChangePriority
from docsynth.schemas.changes import FileCategory, SemanticChangeType
from docsynth.services.change_analyzer import ChangeAnalyzer, categorize_file
from docsynth.services.patch_parser import PatchSemanticExtractor


def _file(path, additions=10, deletions=0, semantic=None, change_type="modified", patch=None):
    return {
        "path": path,
        "change_type": change_type,
        "additions": additions,
        "deletions": deletions,
        "semantic_changes": semantic or [],
        "patch": patch,
    }


def _marker(kind, name="thing", breaking=False, exported=True):
    return {"type": kind, "name": name, "breaking": breaking, "exported": exported}


class TestCategorizeFile:
    @pytest.mark.parametrize("path,expected", [
        ("src/api/users.ts", FileCategory.SOURCE),
        ("src/api/users.test.ts", FileCategory.TEST),
        ("tests/test_users.py", FileCategory.TEST),
        ("dist/bundle.min.js", FileCategory.GENERATED),
        ("package-lock.json", FileCategory.GENERATED),
        ("docs/guide.md", FileCategory.DOCS),
        ("CHANGELOG.md", FileCategory.OTHER),
        ("tsconfig.json", FileCategory.CONFIG),
        (".eslintrc", FileCategory.CONFIG),
        ("LICENSE", FileCategory.OTHER),
    ])
    def test_categories(self, path, expected):
        assert categorize_file(path) == expected


class TestPriority:
    def test_breaking_change_is_critical(self):
        result = ChangeAnalyzer().analyze([
            _file("src/lib.ts", semantic=[_marker("api-change", breaking=True)]),
        ])
        assert result.priority == ChangePriority.CRITICAL
        assert result.requires_documentation is True

    def test_exported_removal_is_critical(self):
        result = ChangeAnalyzer().analyze([
            _file("src/lib.ts", semantic=[_marker("removal", name="oldFn")]),
        ])
        assert result.priority == ChangePriority.CRITICAL

    def test_new_exported_api_is_high(self):
        result = ChangeAnalyzer().analyze([
            _file("src/lib.ts", semantic=[_marker("new-function", name="newFn")]),
        ])
        assert result.priority == ChangePriority.HIGH
        assert "README.md" in result.documentation_impact.affected_docs
        assert "api-reference" in result.documentation_impact.new_docs_needed

    def test_unexported_api_does_not_raise_priority(self):
        result = ChangeAnalyzer().analyze([
            _file("src/lib.ts", semantic=[_marker("new-function", exported=False)]),
        ])
        assert result.priority == ChangePriority.LOW
        assert result.requires_documentation is False

    def test_large_change_is_medium(self):
        result = ChangeAnalyzer().analyze([
            _file("src/a.ts", additions=300),
            _file("src/b.ts", additions=201),
        ])
        assert result.priority == ChangePriority.MEDIUM
        assert result.requires_documentation is True
        assert "CHANGELOG.md" in result.documentation_impact.affected_docs

    def test_exactly_threshold_lines_stays_low(self):
        result = ChangeAnalyzer().analyze([_file("src/a.ts", additions=250, deletions=250)])
        assert result.priority == ChangePriority.LOW

    def test_only_tests_and_config_is_none(self):
        result = ChangeAnalyzer().analyze([
            _file("tests/test_a.py", additions=900),
            _file("pyproject.toml"),
        ])
        assert result.priority == ChangePriority.NONE
        assert result.requires_documentation is False

    def test_empty_change_set_is_none(self):
        result = ChangeAnalyzer().analyze([])
        assert result.priority == ChangePriority.NONE
        assert result.changes == []

    def test_test_file_markers_are_ignored(self):
        result = ChangeAnalyzer().analyze([
            _file("src/lib.test.ts", semantic=[_marker("removal", breaking=True)]),
            _file("src/lib.ts"),
        ])
        assert result.priority == ChangePriority.LOW

    def test_user_facing_path_requires_documentation(self):
        result = ChangeAnalyzer().analyze([
            _file("src/routes/users.ts", semantic=[_marker("deprecation", name="deprecation")]),
        ])
        assert result.priority == ChangePriority.LOW
        assert result.requires_documentation is True

    def test_every_change_gets_a_category(self):
        result = ChangeAnalyzer().analyze([_file("src/a.py"), _file("README.md")])
        assert [c.category for c in result.changes] == [FileCategory.SOURCE, FileCategory.DOCS]


class TestValidation:
    def test_duplicate_paths_rejected(self):
        with pytest.raises(ChangeValidationError) as exc_info:
            ChangeAnalyzer().analyze([_file("src/a.ts"), _file("./src/a.ts")])
        assert "Duplicate" in exc_info.value.message

    def test_negative_additions_rejected(self):
        with pytest.raises(ChangeValidationError):
            ChangeAnalyzer().analyze([_file("src/a.ts", additions=-1)])

    def test_blank_path_rejected(self):
        with pytest.raises(ChangeValidationError):
            ChangeAnalyzer().analyze([_file("   ")])

    def test_input_is_not_mutated(self):
        from docsynth.schemas.changes import FileChange

        change = FileChange(path="src/a.ts", change_type="modified", additions=1)
        ChangeAnalyzer().analyze([change])
        assert change.category is None


class TestWithExtractor:
    def test_markers_derived_from_patch(self):
        patch = "@@ -0,0 +1,2 @@\n+export function charge(amount: number) {\n+}\n"
        result = ChangeAnalyzer(PatchSemanticExtractor()).analyze([
            _file("src/billing.ts", change_type="added", patch=patch),
        ])
        markers = result.changes[0].semantic_changes
        assert [m.type for m in markers] == [SemanticChangeType.NEW_FUNCTION]
        assert result.priority == ChangePriority.HIGH

    def test_given_markers_are_kept(self):
        patch = "@@ -0,0 +1,1 @@\n+export function charge() {}\n"
        result = ChangeAnalyzer(PatchSemanticExtractor()).analyze([
            _file("src/billing.ts", patch=patch, semantic=[_marker("deprecation", name="old")]),
        ])
        assert [m.type for m in result.changes[0].semantic_changes] == [SemanticChangeType.DEPRECATION]
