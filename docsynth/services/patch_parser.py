"""Best-effort extraction of semantic change markers from unified diff patches.

Regex heuristics for JavaScript/TypeScript, Python and Go. Callers depend on
the ``SemanticExtractor`` protocol so a parser-backed implementation can
replace this one.
"""

import re
from typing import Dict, List, Optional, Protocol, Tuple

from ..schemas.changes import CodeLocation, SemanticChange, SemanticChangeType


class SemanticExtractor(Protocol):
    def extract(self, path: str, patch: Optional[str]) -> List[SemanticChange]:
        ...


_HUNK = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)")

# JavaScript / TypeScript
_JS_EXPORT = re.compile(
    r"^export\s+(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(const|let|function|class|interface|type|enum)\s+(\w+)"
)
_JS_FUNCTION = re.compile(r"^(?:async\s+)?function\s+(\w+)")
_JS_CLASS = re.compile(r"^(?:abstract\s+)?class\s+(\w+)")
_JS_INTERFACE = re.compile(r"^interface\s+(\w+)")
_JS_ROUTE = re.compile(r"""^\s*(?:app|router|server)\.(get|post|put|patch|delete)\(\s*['"`]([^'"`]+)""")

# Python: only column-0 definitions are module API.
_PY_DEF = re.compile(r"^(?:async\s+)?def\s+(\w+)\s*\(")
_PY_CLASS = re.compile(r"^class\s+(\w+)")
_PY_ROUTE = re.compile(r"""^@\w+\.(get|post|put|patch|delete|route)\(\s*['"]([^'"]+)""")

# Go: capitalized identifiers are exported.
_GO_FUNC = re.compile(r"^func\s+(?:\([^)]*\)\s*)?(\w+)\s*\(")
_GO_TYPE = re.compile(r"^type\s+(\w+)\s+(struct|interface)")

_EXPORT_KIND = {
    "function": SemanticChangeType.NEW_FUNCTION,
    "class": SemanticChangeType.NEW_CLASS,
    "interface": SemanticChangeType.NEW_INTERFACE,
    "type": SemanticChangeType.NEW_TYPE,
    "enum": SemanticChangeType.NEW_TYPE,
}

_Decl = Tuple[SemanticChangeType, str, bool, str]  # type, name, exported, description


def _language(path: str) -> str:
    lowered = path.lower()
    if lowered.endswith((".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")):
        return "js"
    if lowered.endswith(".py"):
        return "py"
    if lowered.endswith(".go"):
        return "go"
    return ""


def _declaration(language: str, line: str) -> Optional[_Decl]:
    if language == "js":
        m = _JS_EXPORT.match(line)
        if m:
            kind, name = m.group(1), m.group(2)
            return (_EXPORT_KIND.get(kind, SemanticChangeType.NEW_EXPORT), name, True,
                    f"New {kind} export: {name}")
        m = _JS_ROUTE.match(line)
        if m:
            route = f"{m.group(1).upper()} {m.group(2)}"
            return SemanticChangeType.NEW_ENDPOINT, route, True, f"New endpoint: {route}"
        for pattern, kind in ((_JS_FUNCTION, SemanticChangeType.NEW_FUNCTION),
                              (_JS_CLASS, SemanticChangeType.NEW_CLASS),
                              (_JS_INTERFACE, SemanticChangeType.NEW_INTERFACE)):
            m = pattern.match(line)
            if m:
                return kind, m.group(1), False, f"New {kind.value.split('-', 1)[1]}: {m.group(1)}"
        return None

    if language == "py":
        m = _PY_ROUTE.match(line)
        if m:
            method = "ROUTE" if m.group(1) == "route" else m.group(1).upper()
            route = f"{method} {m.group(2)}"
            return SemanticChangeType.NEW_ENDPOINT, route, True, f"New endpoint: {route}"
        m = _PY_DEF.match(line)
        if m:
            name = m.group(1)
            return SemanticChangeType.NEW_FUNCTION, name, not name.startswith("_"), f"New function: {name}"
        m = _PY_CLASS.match(line)
        if m:
            name = m.group(1)
            return SemanticChangeType.NEW_CLASS, name, not name.startswith("_"), f"New class: {name}"
        return None

    if language == "go":
        m = _GO_FUNC.match(line)
        if m:
            name = m.group(1)
            return SemanticChangeType.NEW_FUNCTION, name, name[:1].isupper(), f"New function: {name}"
        m = _GO_TYPE.match(line)
        if m:
            name, kind = m.group(1), m.group(2)
            change = SemanticChangeType.NEW_INTERFACE if kind == "interface" else SemanticChangeType.NEW_TYPE
            return change, name, name[:1].isupper(), f"New {kind}: {name}"
    return None


class PatchSemanticExtractor:
    """Derives ``SemanticChange`` markers from a file's patch text."""

    def extract(self, path: str, patch: Optional[str]) -> List[SemanticChange]:
        language = _language(path)
        if not patch or not language:
            return []

        added: Dict[str, SemanticChange] = {}
        removed: Dict[str, SemanticChange] = {}
        changes: List[SemanticChange] = []
        current_line = 0

        for line in patch.splitlines():
            hunk = _HUNK.match(line)
            if hunk:
                current_line = int(hunk.group(1))
                continue

            if line.startswith("+") and not line.startswith("+++"):
                content = line[1:]
                location = CodeLocation(file=path, start_line=current_line, end_line=current_line)
                decl = _declaration(language, content)
                if decl:
                    kind, name, exported, description = decl
                    change = SemanticChange(type=kind, name=name, description=description,
                                            location=location, exported=exported)
                    added[name] = change
                    changes.append(change)
                if "@deprecated" in content or "DeprecationWarning" in content:
                    changes.append(SemanticChange(
                        type=SemanticChangeType.DEPRECATION,
                        name="deprecation",
                        description="Deprecation added",
                        location=location,
                    ))
                current_line += 1
            elif line.startswith("-") and not line.startswith("---"):
                decl = _declaration(language, line[1:])
                if decl and decl[2]:
                    kind, name, _, _ = decl
                    removed[name] = SemanticChange(
                        type=SemanticChangeType.REMOVAL,
                        name=name,
                        description=f"Removed export: {name}",
                        location=CodeLocation(file=path, start_line=current_line, end_line=current_line),
                        breaking=True,
                    )
            else:
                current_line += 1

        # A declaration removed and re-added in the same patch changed its signature.
        for name, removal in removed.items():
            replacement = added.get(name)
            if replacement is not None:
                changes.remove(replacement)
                changes.append(SemanticChange(
                    type=SemanticChangeType.SIGNATURE_CHANGE,
                    name=name,
                    description=f"Signature changed: {name}",
                    location=replacement.location,
                    exported=replacement.exported,
                ))
            else:
                changes.append(removal)

        return changes
