"""
tests/test_api_snippets.py -- Integration tests for /api/v1/snippets routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> access rules -> LibraryStore -> response model serialization.

Coverage:
  - auth failures (401) and create-on-behalf-of denial (403)
  - create: validation fields, language detection, tag normalization
  - read/update/delete rules for owner, read sharee, write sharee, stranger
  - pagination with has_more
  - search ranking, caching and cache invalidation
  - export download and JSON / VS Code import
  - storage failure on update surfaces as a 500 envelope
"""

from __future__ import annotations

import json
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from api.main import app
from auth.models import User
from auth.tokens import create_access_token, hash_password
from core.config import get_settings


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _new_user(api_stores, email: str) -> tuple[dict[str, str], int]:
    """Create an account with an empty library; returns (headers, user_id)."""
    uid = api_stores[0].create_user(User(email=email, hashed_password=hash_password("password123")))
    return bearer(create_access_token(uid, email, expire_seconds=3600)), uid


def _snippet(**overrides) -> dict:
    body = {
        "title": "Debounce helper",
        "description": "Delay a function until input settles",
        "code": "function debounce(fn, ms) { let t; return (...a) => { clearTimeout(t); t = setTimeout(() => fn(...a), ms); }; }",
        "language": "javascript",
        "tags": ["utils", "Timing"],
    }
    body.update(overrides)
    return body


def _create(client: TestClient, headers: dict, **overrides) -> dict:
    resp = client.post("/api/v1/snippets", json=_snippet(**overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestSnippetAuthFailure:
    def test_list_unauthenticated(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/snippets")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_create_unauthenticated(self, api_client) -> None:
        client, _, _ = api_client
        assert client.post("/api/v1/snippets", json=_snippet()).status_code == 401

    def test_create_for_another_user_denied(self, api_client, other_user) -> None:
        """A body user_id that is not the caller's is refused before anything is written."""
        client, token, _ = api_client
        _, other_uid, _ = other_user
        resp = client.post("/api/v1/snippets", json=_snippet(user_id=other_uid), headers=bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "permission_denied"


class TestSnippetCreate:
    def test_create_returns_snippet(self, api_client) -> None:
        client, token, uid = api_client
        data = _create(client, bearer(token), metadata={"usage_notes": "debounce(save, 300)", "author": "Ada"})
        assert data["user_id"] == uid
        assert data["language"] == "javascript"
        assert data["language_label"] == "JavaScript"
        assert data["tags"] == ["utils", "timing"]
        assert data["metadata"]["usage_notes"] == "debounce(save, 300)"
        assert data["is_shared"] is False
        assert data["shared_with"] == []
        assert data["last_edited_by"] == uid
        assert data["created_at"] == data["updated_at"]

    def test_create_records_tag_usage(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "tagger@example.com")
        _create(client, headers, tags=["react"])
        _create(client, headers, tags=["react", "hooks"])
        tags = {t["name"]: t["usage_count"] for t in client.get("/api/v1/tags", headers=headers).json()}
        assert tags == {"react": 2, "hooks": 1}

    def test_create_detects_language_when_omitted(self, api_client) -> None:
        client, token, _ = api_client
        body = _snippet(language=None, code="def add(a, b):\n    return a + b\n")
        with patch("api.routes.v1.snippets.detect_language", return_value="python") as detect:
            resp = client.post("/api/v1/snippets", json=body, headers=bearer(token))
        assert resp.status_code == 201
        assert resp.json()["language"] == "python"
        detect.assert_called_once()

    def test_create_validation_errors(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post(
            "/api/v1/snippets",
            json=_snippet(title="  ", code="", language="javascript"),
            headers=bearer(token),
        )
        assert resp.status_code == 422
        fields = resp.json()["error"]["fields"]
        assert {"field": "title", "message": "Title is required"} in fields
        assert {"field": "code", "message": "Code content is required"} in fields

    def test_create_title_too_long(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post("/api/v1/snippets", json=_snippet(title="x" * 201), headers=bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["message"] == "Title must be less than 200 characters"

    def test_create_unsupported_language(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post("/api/v1/snippets", json=_snippet(language="cobol"), headers=bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"][0]["field"] == "language"

    def test_create_invalid_tag(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post("/api/v1/snippets", json=_snippet(tags=["no spaces"]), headers=bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == [
            {"field": "tags", "message": "Tags can only contain letters, numbers, and hyphens"}
        ]

    def test_create_in_foreign_collection_denied(self, api_client, other_user) -> None:
        client, token, _ = api_client
        other_token, _, _ = other_user
        coll = client.post("/api/v1/collections", json={"name": "Bob's"}, headers=bearer(other_token)).json()
        resp = client.post("/api/v1/snippets", json=_snippet(collection_id=coll["id"]), headers=bearer(token))
        assert resp.status_code == 403

    def test_create_in_missing_collection(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post("/api/v1/snippets", json=_snippet(collection_id=99999), headers=bearer(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "collection_not_found"


class TestSnippetAccess:
    def test_get_missing_snippet(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.get("/api/v1/snippets/99999", headers=bearer(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "snippet_not_found"

    def test_stranger_cannot_read(self, api_client, third_user) -> None:
        client, token, _ = api_client
        stranger_token, _, _ = third_user
        snippet = _create(client, bearer(token))
        resp = client.get(f"/api/v1/snippets/{snippet['id']}", headers=bearer(stranger_token))
        assert resp.status_code == 403

    def test_read_sharee_can_read_not_update_or_delete(self, api_client, other_user) -> None:
        client, token, _ = api_client
        other_token, _, other_email = other_user
        snippet = _create(client, bearer(token), title="Shared read-only")
        shared = client.post(
            f"/api/v1/snippets/{snippet['id']}/share",
            json={"users": [{"email": other_email.upper(), "permission": "read"}]},
            headers=bearer(token),
        )
        assert shared.status_code == 200, shared.text
        assert shared.json()["is_shared"] is True
        assert shared.json()["shared_with"] == [{"email": other_email, "permission": "read"}]

        url = f"/api/v1/snippets/{snippet['id']}"
        assert client.get(url, headers=bearer(other_token)).status_code == 200
        assert client.patch(url, json={"title": "Hijacked"}, headers=bearer(other_token)).status_code == 403
        assert client.delete(url, headers=bearer(other_token)).status_code == 403

        shared_list = client.get("/api/v1/snippets/shared", headers=bearer(other_token)).json()
        assert snippet["id"] in [s["id"] for s in shared_list]

    def test_write_sharee_can_update(self, api_client, other_user) -> None:
        client, token, _ = api_client
        other_token, other_uid, other_email = other_user
        snippet = _create(client, bearer(token), title="Shared writable")
        client.post(
            f"/api/v1/snippets/{snippet['id']}/share",
            json={"users": [{"email": other_email, "permission": "write"}]},
            headers=bearer(token),
        )
        resp = client.patch(
            f"/api/v1/snippets/{snippet['id']}", json={"code": "const x = 1;"}, headers=bearer(other_token)
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["code"] == "const x = 1;"
        assert data["last_edited_by"] == other_uid
        assert data["title"] == "Shared writable"

    def test_sharee_cannot_change_sharing(self, api_client, other_user, third_user) -> None:
        client, token, _ = api_client
        other_token, _, other_email = other_user
        _, _, third_email = third_user
        snippet = _create(client, bearer(token))
        client.post(
            f"/api/v1/snippets/{snippet['id']}/share",
            json={"users": [{"email": other_email, "permission": "write"}]},
            headers=bearer(token),
        )
        resp = client.post(
            f"/api/v1/snippets/{snippet['id']}/share",
            json={"users": [{"email": third_email, "permission": "read"}]},
            headers=bearer(other_token),
        )
        assert resp.status_code == 403

    def test_share_requires_users(self, api_client) -> None:
        client, token, _ = api_client
        snippet = _create(client, bearer(token))
        resp = client.post(f"/api/v1/snippets/{snippet['id']}/share", json={"users": []}, headers=bearer(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "At least one user is required"

    def test_unshare_revokes_access(self, api_client, other_user) -> None:
        client, token, _ = api_client
        other_token, _, other_email = other_user
        snippet = _create(client, bearer(token))
        url = f"/api/v1/snippets/{snippet['id']}"
        client.post(f"{url}/share", json={"users": [{"email": other_email}]}, headers=bearer(token))
        resp = client.delete(f"{url}/share/{other_email}", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["is_shared"] is False
        assert client.get(url, headers=bearer(other_token)).status_code == 403

    def test_owner_can_delete(self, api_client) -> None:
        client, token, _ = api_client
        snippet = _create(client, bearer(token))
        url = f"/api/v1/snippets/{snippet['id']}"
        assert client.delete(url, headers=bearer(token)).status_code == 204
        assert client.get(url, headers=bearer(token)).status_code == 404


class TestSnippetUpdate:
    def test_partial_update_keeps_other_fields(self, api_client) -> None:
        client, token, _ = api_client
        snippet = _create(client, bearer(token))
        resp = client.patch(
            f"/api/v1/snippets/{snippet['id']}", json={"tags": ["Renamed", "renamed"]}, headers=bearer(token)
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["tags"] == ["renamed"]
        assert data["title"] == snippet["title"]
        assert data["code"] == snippet["code"]

    def test_empty_update_rejected(self, api_client) -> None:
        client, token, _ = api_client
        snippet = _create(client, bearer(token))
        resp = client.patch(f"/api/v1/snippets/{snippet['id']}", json={}, headers=bearer(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_operation"

    def test_blank_title_rejected(self, api_client) -> None:
        client, token, _ = api_client
        snippet = _create(client, bearer(token))
        resp = client.patch(f"/api/v1/snippets/{snippet['id']}", json={"title": ""}, headers=bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == [{"field": "title", "message": "Title is required"}]

    def test_update_missing_snippet(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.patch("/api/v1/snippets/99999", json={"title": "x"}, headers=bearer(token))
        assert resp.status_code == 404

    def test_storage_failure_returns_internal_error(self, api_client, api_stores) -> None:
        """A database error during update is logged and answered with the generic 500 envelope."""
        client, token, _ = api_client
        snippet = _create(client, bearer(token))
        library = api_stores[1]
        failing = OperationalError("UPDATE snippets", {}, Exception("disk I/O error"))
        # No context manager: the running module client already started the lifespan.
        quiet = TestClient(app, raise_server_exceptions=False)
        with patch.object(library, "update_snippet", side_effect=failing):
            resp = quiet.patch(f"/api/v1/snippets/{snippet['id']}", json={"title": "New"}, headers=bearer(token))
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "internal_error"
        assert "disk I/O" not in error["message"]


class TestSnippetListing:
    def test_pagination_has_more(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "pager@example.com")
        for title in ("Alpha", "Bravo", "Charlie"):
            _create(client, headers, title=title)

        first = client.get("/api/v1/snippets?limit=2&order_by=title&direction=asc", headers=headers).json()
        assert [s["title"] for s in first["snippets"]] == ["Alpha", "Bravo"]
        assert first["has_more"] is True
        assert first["total"] == 3

        second = client.get("/api/v1/snippets?limit=2&offset=2&order_by=title&direction=asc", headers=headers).json()
        assert [s["title"] for s in second["snippets"]] == ["Charlie"]
        assert second["has_more"] is False

    def test_invalid_order_by(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.get("/api/v1/snippets?order_by=code", headers=bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"][0]["field"] == "order_by"

    def test_list_only_own_snippets(self, api_client, api_stores) -> None:
        client, token, _ = api_client
        headers, uid = _new_user(api_stores, "loner@example.com")
        _create(client, bearer(token), title="Not yours")
        _create(client, headers, title="Yours")
        data = client.get("/api/v1/snippets", headers=headers).json()
        assert [s["title"] for s in data["snippets"]] == ["Yours"]
        assert all(s["user_id"] == uid for s in data["snippets"])


class TestSnippetSearch:
    def test_title_match_ranks_above_code_match(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "searcher@example.com")
        _create(client, headers, title="Plain", description="", code="const zebra = 1;", tags=[])
        _create(client, headers, title="Zebra stripes", description="", code="x", tags=[])
        _create(client, headers, title="Unrelated", description="", code="y", tags=[])

        resp = client.get("/api/v1/snippets/search?q=zebra", headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert [r["snippet"]["title"] for r in data["results"]] == ["Zebra stripes", "Plain"]
        assert data["results"][0]["matched_fields"] == ["title"]
        assert data["results"][0]["score"] == 10
        assert data["results"][1]["matched_fields"] == ["code"]

    def test_results_cached_until_snippet_write(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "cacher@example.com")
        _create(client, headers, title="Cache me", tags=[])

        first = client.get("/api/v1/snippets/search?q=cache", headers=headers).json()
        second = client.get("/api/v1/snippets/search?q=cache", headers=headers).json()
        assert first["cached"] is False
        assert second["cached"] is True
        assert second["results"] == first["results"]

        _create(client, headers, title="Cache me too", tags=[])
        third = client.get("/api/v1/snippets/search?q=cache", headers=headers).json()
        assert third["cached"] is False
        assert third["total"] == 2

    def test_filters(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "filterer@example.com")
        _create(client, headers, title="JS one", language="javascript", tags=["web"])
        _create(client, headers, title="Py one", language="python", tags=["cli"])

        by_language = client.get("/api/v1/snippets/search?language=python", headers=headers).json()
        assert [r["snippet"]["title"] for r in by_language["results"]] == ["Py one"]

        by_tag = client.get("/api/v1/snippets/search?tag=WEB&tag=docs", headers=headers).json()
        assert [r["snippet"]["title"] for r in by_tag["results"]] == ["JS one"]

        future = client.get("/api/v1/snippets/search?start=2999-01-01T00:00:00", headers=headers).json()
        assert future["total"] == 0

    def test_bad_date_filter(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.get("/api/v1/snippets/search?start=yesterday", headers=bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestExportImport:
    def test_export_download(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "exporter@example.com")
        _create(client, headers, title="Exported")
        resp = client.get("/api/v1/snippets/export", headers=headers)
        assert resp.status_code == 200
        assert resp.headers["content-disposition"] == 'attachment; filename="snippets-export.json"'
        data = json.loads(resp.text)
        assert [s["title"] for s in data] == ["Exported"]
        assert "metadata" in data[0]

        bare = json.loads(client.get("/api/v1/snippets/export?include_metadata=false", headers=headers).text)
        assert set(bare[0]) == {"title", "description", "code", "language", "tags"}

    def test_import_json_reports_bad_entries(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "importer@example.com")
        content = json.dumps(
            [
                {"title": "Good", "code": "print(1)", "language": "python", "tags": ["Imported"]},
                {"title": "No code", "language": "python"},
            ]
        )
        resp = client.post(
            "/api/v1/snippets/import",
            files={"file": ("backup.json", content, "application/json")},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["format"] == "json"
        assert data["success"] is True
        assert data["imported"] == 1
        assert data["error_count"] == 1
        assert data["errors"] == [{"index": 2, "title": "No code", "errors": ["Missing or invalid code"]}]

        listed = client.get("/api/v1/snippets", headers=headers).json()["snippets"]
        assert [(s["title"], s["tags"]) for s in listed] == [("Good", ["imported"])]

    def test_import_vscode_snippets(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "vscode@example.com")
        content = json.dumps(
            {
                "Print to console": {
                    "prefix": "log",
                    "body": ["console.log('$1');", "$2"],
                    "description": "Log output to console",
                }
            }
        )
        resp = client.post(
            "/api/v1/snippets/import?language=typescript",
            files={"file": ("ts.code-snippets", content, "application/json")},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["format"] == "vscode"
        snippet = client.get("/api/v1/snippets", headers=headers).json()["snippets"][0]
        assert snippet["title"] == "Print to console"
        assert snippet["code"] == "console.log('$1');\n$2"
        assert snippet["language"] == "typescript"
        assert snippet["tags"] == ["log"]

    def test_import_rejects_blank_title_and_code(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "blank-import@example.com")
        content = json.dumps([{"title": "   ", "code": "   ", "language": "python"}])
        resp = client.post(
            "/api/v1/snippets/import",
            files={"file": ("blank.json", content, "application/json")},
            headers=headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["imported"] == 0
        assert data["error_count"] == 1
        assert data["errors"][0]["errors"] == ["Missing or invalid title", "Missing or invalid code"]
        assert client.get("/api/v1/snippets", headers=headers).json()["snippets"] == []

    def test_import_unparseable_file(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post(
            "/api/v1/snippets/import",
            files={"file": ("broken.json", "{not json", "application/json")},
            headers=bearer(token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert data["imported"] == 0
        assert data["errors"][0]["title"] == "Parse Error"

    def test_import_too_large(self, api_client, monkeypatch) -> None:
        client, token, _ = api_client
        monkeypatch.setattr(get_settings(), "max_import_bytes", 16)
        resp = client.post(
            "/api/v1/snippets/import",
            files={"file": ("big.json", "[" + " " * 64 + "]", "application/json")},
            headers=bearer(token),
        )
        assert resp.status_code == 413
        assert resp.json()["error"]["code"] == "file_too_large"

    def test_import_wrong_extension(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post(
            "/api/v1/snippets/import",
            files={"file": ("notes.txt", "[]", "text/plain")},
            headers=bearer(token),
        )
        assert resp.status_code == 415
        assert resp.json()["error"]["code"] == "unsupported_format"


class TestLanguages:
    def test_languages_public(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/languages")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 24
        assert {"value": "plaintext", "label": "Plain Text"} in data

    def test_detect_language(self, api_client) -> None:
        client, token, _ = api_client
        with patch("api.routes.v1.snippets.detect_language", return_value="rust"):
            resp = client.post("/api/v1/snippets/detect-language", json={"code": "fn main() {}"}, headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json() == {"value": "rust", "label": "Rust"}
