"""Tests for semantic marker extraction from unified diffs."""

from docsynth.schemas.changes import SemanticChangeType
from docsynth.services.patch_parser import PatchSemanticExtractor


def _extract(path, patch):
    return PatchSemanticExtractor().extract(path, patch)


class TestTypeScript:
    def test_exported_function(self):
        changes = _extract("src/a.ts", "@@ -1,0 +5,1 @@\n+export async function load(id: string) {\n")
        assert len(changes) == 1
        assert changes[0].type == SemanticChangeType.NEW_FUNCTION
        assert changes[0].name == "load"
        assert changes[0].exported is True
        assert changes[0].location.start_line == 5

    def test_exported_interface_and_const(self):
        patch = "@@ -0,0 +1,2 @@\n+export interface User {}\n+export const LIMIT = 5;\n"
        types = [c.type for c in _extract("src/a.ts", patch)]
        assert types == [SemanticChangeType.NEW_INTERFACE, SemanticChangeType.NEW_EXPORT]

    def test_route_is_endpoint(self):
        changes = _extract("src/routes.js", "@@ -0,0 +1,1 @@\n+router.post('/invoices', handler)\n")
        assert changes[0].type == SemanticChangeType.NEW_ENDPOINT
        assert changes[0].name == "POST /invoices"

    def test_local_function_not_exported(self):
        changes = _extract("src/a.ts", "@@ -0,0 +1,1 @@\n+function helper() {}\n")
        assert changes[0].exported is False

    def test_removed_export_is_breaking(self):
        changes = _extract("src/a.ts", "@@ -1,1 +1,0 @@\n-export function gone() {}\n")
        assert len(changes) == 1
        assert changes[0].type == SemanticChangeType.REMOVAL
        assert changes[0].breaking is True

    def test_remove_and_re_add_is_signature_change(self):
        patch = (
            "@@ -1,1 +1,1 @@\n"
            "-export function pay(amount: number) {}\n"
            "+export function pay(amount: number, currency: string) {}\n"
        )
        changes = _extract("src/a.ts", patch)
        assert [c.type for c in changes] == [SemanticChangeType.SIGNATURE_CHANGE]
        assert changes[0].breaking is False

    def test_deprecation_marker(self):
        changes = _extract("src/a.ts", "@@ -0,0 +1,1 @@\n+/** @deprecated use pay() */\n")
        assert changes[0].type == SemanticChangeType.DEPRECATION


class TestPython:
    def test_public_and_private_defs(self):
        patch = "@@ -0,0 +1,3 @@\n+def charge(amount):\n+class _Cache:\n+    def inner(self):\n"
        changes = _extract("billing/core.py", patch)
        assert [(c.type, c.name, c.exported) for c in changes] == [
            (SemanticChangeType.NEW_FUNCTION, "charge", True),
            (SemanticChangeType.NEW_CLASS, "_Cache", False),
        ]

    def test_route_decorator(self):
        changes = _extract("app/api.py", "@@ -0,0 +1,1 @@\n+@router.get(\"/health\")\n")
        assert changes[0].type == SemanticChangeType.NEW_ENDPOINT
        assert changes[0].name == "GET /health"


class TestGo:
    def test_capitalized_names_are_exported(self):
        patch = "@@ -0,0 +1,2 @@\n+func Serve(addr string) error {\n+type conn struct {\n"
        changes = _extract("server.go", patch)
        assert [(c.name, c.exported) for c in changes] == [("Serve", True), ("conn", False)]


class TestUnsupported:
    def test_unknown_language_yields_nothing(self):
        assert _extract("README.md", "@@ -0,0 +1,1 @@\n+# Title\n") == []

    def test_missing_patch_yields_nothing(self):
        assert _extract("src/a.ts", None) == []
