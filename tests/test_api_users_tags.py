"""
tests/test_api_users_tags.py -- Integration tests for user documents and tag routes.

Coverage:
  - GET /users/{id}: own document only, default preferences
  - PUT /users/{id}/preferences: merge semantics, shortcut merge, validation
  - GET /tags, /tags/search, /tags/suggestions: per-user statistics
"""

from __future__ import annotations

from auth.models import User
from auth.tokens import create_access_token, hash_password


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _new_user(api_stores, email: str) -> tuple[dict[str, str], int]:
    uid = api_stores[0].create_user(User(email=email, hashed_password=hash_password("password123")))
    return bearer(create_access_token(uid, email, expire_seconds=3600)), uid


class TestUserDocument:
    def test_get_own_document(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.get(f"/api/v1/users/{uid}", headers=bearer(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == uid
        assert data["email"] == "ada@example.com"
        assert data["display_name"] == "Ada"
        assert data["preferences"]["theme"] == "light"
        assert data["preferences"]["defaultLanguage"] == "javascript"

    def test_other_users_document_forbidden(self, api_client, other_user) -> None:
        client, token, _ = api_client
        _, other_uid, _ = other_user
        assert client.get(f"/api/v1/users/{other_uid}", headers=bearer(token)).status_code == 403
        assert client.get(f"/api/v1/users/{other_uid}/preferences", headers=bearer(token)).status_code == 403

    def test_unknown_id_is_forbidden_not_missing(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.get("/api/v1/users/99999", headers=bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "permission_denied"

    def test_requires_auth(self, api_client) -> None:
        client, _, uid = api_client
        assert client.get(f"/api/v1/users/{uid}").status_code == 401


class TestPreferences:
    def test_update_merges(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, uid = _new_user(api_stores, "prefs@example.com")
        url = f"/api/v1/users/{uid}/preferences"

        resp = client.put(url, json={"theme": "dark", "keyboardShortcuts": {"search": "ctrl+p"}}, headers=headers)
        assert resp.status_code == 200
        prefs = resp.json()
        assert prefs["theme"] == "dark"
        assert prefs["defaultLanguage"] == "javascript"
        assert prefs["keyboardShortcuts"] == {
            "search": "ctrl+p",
            "newSnippet": "ctrl+n",
            "copySnippet": "ctrl+c",
            "help": "ctrl+/",
        }

        resp = client.put(url, json={"defaultLanguage": "python"}, headers=headers)
        assert resp.json()["theme"] == "dark"
        assert client.get(url, headers=headers).json()["defaultLanguage"] == "python"

    def test_unsupported_default_language(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.put(f"/api/v1/users/{uid}/preferences", json={"defaultLanguage": "cobol"}, headers=bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"][0]["field"] == "defaultLanguage"

    def test_unknown_theme_rejected(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.put(f"/api/v1/users/{uid}/preferences", json={"theme": "solarized"}, headers=bearer(token))
        assert resp.status_code == 422

    def test_unknown_key_rejected(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.put(f"/api/v1/users/{uid}/preferences", json={"fontSize": 14}, headers=bearer(token))
        assert resp.status_code == 422


class TestTags:
    def _seed(self, client, headers: dict) -> None:
        for tags in (["react", "hooks"], ["react", "state"], ["React"], ["css"]):
            resp = client.post(
                "/api/v1/snippets",
                json={"title": "t", "code": "x", "language": "javascript", "tags": tags},
                headers=headers,
            )
            assert resp.status_code == 201, resp.text

    def test_list_sorted_by_usage(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "tagstats@example.com")
        self._seed(client, headers)

        tags = client.get("/api/v1/tags", headers=headers).json()
        assert tags[0] == {**tags[0], "name": "react", "usage_count": 3}
        assert [t["name"] for t in tags[1:]] == ["css", "hooks", "state"]

        by_name = client.get("/api/v1/tags?sort_by=name&direction=asc", headers=headers).json()
        assert [t["name"] for t in by_name] == ["css", "hooks", "react", "state"]

    def test_search_and_suggestions(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "tagsearch@example.com")
        self._seed(client, headers)

        found = client.get("/api/v1/tags/search?q=RE", headers=headers).json()
        assert [t["name"] for t in found] == ["react"]

        suggestions = client.get("/api/v1/tags/suggestions?limit=2", headers=headers).json()["suggestions"]
        assert len(suggestions) == 2
        assert set(suggestions) <= {"react", "hooks", "state", "css"}

    def test_tags_are_per_user(self, api_client, api_stores) -> None:
        client, _, _ = api_client
        headers, _ = _new_user(api_stores, "tagless@example.com")
        assert client.get("/api/v1/tags", headers=headers).json() == []

    def test_invalid_sort(self, api_client) -> None:
        client, token, _ = api_client
        assert client.get("/api/v1/tags?sort_by=color", headers=bearer(token)).status_code == 422
