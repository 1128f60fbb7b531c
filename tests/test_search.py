import threading
import time

import pytest

from auth.roles import Principal, Role
from core.errors import UpstreamError, ValidationError
from core.observability import observability
from search.aggregator import SearchAggregator, SearchConfig, merge_results
from search.schemas import ResultKind, SearchResult, SearchScope
from search.sources import FilesSource, PagesSource, SearchSource
from storage.object_store.buckets import LocalObjectStore, format_file_size


class StubSource(SearchSource):
    def __init__(self, name, kind, scope, count=0, fail=False, public=True):
        self.name = name
        self.kind = kind
        self.scope = scope
        self.count = count
        self.fail = fail
        self.public = public
        self.calls = 0

    def applies_to(self, scope, principal):
        return super().applies_to(scope, principal) and (self.public or principal is not None)

    def search(self, query, principal):
        self.calls += 1
        if self.fail:
            raise RuntimeError("datastore unavailable")
        return [
            SearchResult(id=f"{self.name}-{i}", type=self.kind, title=f"{query} {i}")
            for i in range(self.count)
        ]


def _stub_sources(pages=0, users=0, files=0, fail_users=False):
    return [
        StubSource("files", ResultKind.FILE, SearchScope.FILES, files),
        StubSource("users", ResultKind.USER, SearchScope.USERS, users, fail=fail_users),
        StubSource("pages", ResultKind.PAGE, SearchScope.PAGES, pages),
    ]


def _store(storage_config):
    return LocalObjectStore(storage_config.root, bucket=storage_config.bucket)


class TestAggregator:
    async def test_short_query_touches_no_source(self):
        sources = _stub_sources(pages=1)
        aggregator = SearchAggregator(sources, SearchConfig("abort"))

        for query in ("a", " b ", "", None):
            with pytest.raises(ValidationError, match="at least 2 characters"):
                await aggregator.search(query)

        assert all(s.calls == 0 for s in sources)

    async def test_invalid_scope(self):
        with pytest.raises(ValidationError, match="Invalid search type"):
            await SearchAggregator(_stub_sources(), SearchConfig("abort")).search("query", "everything")

    async def test_order_cap_and_total(self):
        aggregator = SearchAggregator(_stub_sources(pages=5, users=10, files=15), SearchConfig("abort"))
        principal = Principal(id="p", email="p@example.com", role=Role.ADMIN)

        response = await aggregator.search("Report", "all", principal)

        assert response.query == "report"
        assert response.total == 30
        assert len(response.results) == 20
        kinds = [r.type for r in response.results]
        assert kinds == [ResultKind.PAGE] * 5 + [ResultKind.USER] * 10 + [ResultKind.FILE] * 5

    async def test_scope_limits_sources(self):
        sources = _stub_sources(pages=2, users=2, files=2)
        principal = Principal(id="p", email="p@example.com", role=Role.ADMIN)

        response = await SearchAggregator(sources, SearchConfig("abort")).search("re", "files", principal)

        assert {r.type for r in response.results} == {ResultKind.FILE}
        assert [s.calls for s in sources] == [1, 0, 0]

    async def test_abort_policy_fails_the_whole_search(self):
        aggregator = SearchAggregator(_stub_sources(pages=1, fail_users=True), SearchConfig("abort"))
        with pytest.raises(UpstreamError):
            await aggregator.search("report", "all", Principal(id="p", email="e", role=Role.ADMIN))

    async def test_abort_waits_for_slow_sources_to_finish(self):
        finished = threading.Event()

        class SlowUsers(StubSource):
            def search(self, query, principal):
                time.sleep(0.2)
                finished.set()
                return []

        sources = [
            SlowUsers("users", ResultKind.USER, SearchScope.USERS),
            StubSource("files", ResultKind.FILE, SearchScope.FILES, fail=True),
        ]
        aggregator = SearchAggregator(sources, SearchConfig("abort"))

        with pytest.raises(UpstreamError):
            await aggregator.search("report", "all", Principal(id="p", email="e", role=Role.ADMIN))
        assert finished.is_set()

    async def test_degrade_policy_keeps_other_sources(self):
        aggregator = SearchAggregator(_stub_sources(pages=1, files=2, fail_users=True), SearchConfig("degrade"))
        response = await aggregator.search("report", "all", Principal(id="p", email="e", role=Role.ADMIN))
        assert response.total == 3
        assert [r.type for r in response.results] == [ResultKind.PAGE, ResultKind.FILE, ResultKind.FILE]

    async def test_source_spans_and_failure_counter(self):
        observability.clear()
        aggregator = SearchAggregator(_stub_sources(pages=1, fail_users=True), SearchConfig("degrade"))
        await aggregator.search("report", "all", Principal(id="p", email="e", role=Role.ADMIN))

        (parent,) = observability.recent_spans("search.aggregate")
        users = observability.recent_spans("search.source.users")
        assert [s.parent_id for s in users] == [parent.span_id]
        assert users[0].error == "RuntimeError"
        assert observability.get_metrics()["search.users.failures"] == 1
        assert observability.get_metrics()["search.pages.hits"] == 1

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            SearchConfig("retry")

    def test_merge_is_stable_within_a_kind(self):
        files = [SearchResult(id=str(i), type=ResultKind.FILE, title=str(i)) for i in range(3)]
        pages = [SearchResult(id="p", type=ResultKind.PAGE, title="p")]
        results, total = merge_results([files, pages])
        assert [r.id for r in results] == ["p", "0", "1", "2"]
        assert total == 4


class TestSources:
    def test_pages_match_title_or_description(self):
        assert [r.url for r in PagesSource().search("contact", None)] == ["/contact"]
        assert [r.id for r in PagesSource().search("mission", None)] == ["about"]

    def test_files_skip_placeholder_and_cap(self, storage_config):
        store = _store(storage_config)
        store.upload("owner/.emptyFolderPlaceholder", b"")
        for i in range(12):
            store.upload(f"owner/img_{i:02d}.png", b"x" * 1536)

        principal = Principal(id="owner", email="o@example.com", role=Role.USER)
        results = FilesSource(store).search("img", principal)

        assert len(results) == 10
        assert all(r.description == "Size: 1.5 KB" for r in results)
        assert all(r.url == "/dashboard/files" for r in results)

    def test_files_need_a_principal(self, storage_config):
        assert not FilesSource(_store(storage_config)).applies_to(SearchScope.ALL, None)


@pytest.mark.parametrize("size,expected", [
    (0, "0 Bytes"),
    (512, "512 Bytes"),
    (1024, "1 KB"),
    (1536, "1.5 KB"),
    (5 * 1024 * 1024, "5 MB"),
    (1234567, "1.18 MB"),
])
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


class TestSearchEndpoint:
    def test_anonymous_contact_finds_public_page_only(self, client, make_user, storage_config):
        user = make_user(Role.USER, first_name="Contact", last_name="Person")
        _store(storage_config).upload(f"{user.id}/contact.png", b"png")

        response = client.get("/search", params={"q": "contact", "type": "all"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["query"] == "contact"
        assert body["results"] == [{
            "id": "contact",
            "type": "page",
            "title": "Contact Us",
            "description": "Get in touch with our team",
            "url": "/contact",
        }]
        assert body["total"] == 1

    @pytest.mark.parametrize("scope", ["users", "files"])
    def test_anonymous_private_scopes_are_empty(self, client, make_user, storage_config, scope):
        user = make_user(Role.USER, first_name="Alice")
        _store(storage_config).upload(f"{user.id}/alice.png", b"png")

        response = client.get("/search", params={"q": "alice", "type": scope})

        assert response.status_code == 200
        assert response.json()["results"] == []

    def test_user_sees_only_own_files_and_no_users(self, client, make_user, storage_config):
        me = make_user(Role.USER, first_name="Report", last_name="Owner")
        other = make_user(Role.USER, first_name="Report.png", last_name="Fan")
        store = _store(storage_config)
        store.upload(f"{me.id}/report.png", b"a" * 2048)
        store.upload(f"{other.id}/report.png", b"b")

        response = client.get("/search", params={"q": "report.png"}, headers=me.headers)

        results = response.json()["results"]
        assert [r["type"] for r in results] == ["file"]
        assert results[0]["title"] == "report.png"
        assert results[0]["description"] == "Size: 2 KB"

    def test_non_admin_users_scope_is_empty(self, client, make_user):
        make_user(Role.USER, first_name="Alice")
        manager = make_user(Role.MANAGER)

        response = client.get("/search", params={"q": "ali", "type": "users"}, headers=manager.headers)

        assert response.json()["results"] == []

    def test_admin_finds_users(self, client, make_user):
        alice = make_user(Role.USER, first_name="Alice", last_name="Smith", email="alice@example.com")
        admin = make_user(Role.ADMIN, first_name="Root", last_name="Admin")

        response = client.get("/search", params={"q": "ali"}, headers=admin.headers)

        users = [r for r in response.json()["results"] if r["type"] == "user"]
        assert users == [{
            "id": alice.id,
            "type": "user",
            "title": "Alice Smith",
            "description": "alice@example.com",
            "url": f"/admin/users/{alice.id}",
            "email": "alice@example.com",
            "role": "user",
        }]

    def test_admin_matches_exact_id(self, client, make_user):
        target = make_user(Role.USER, first_name="Zed")
        admin = make_user(Role.ADMIN)

        response = client.get("/search", params={"q": target.id, "type": "users"}, headers=admin.headers)

        assert [r["id"] for r in response.json()["results"]] == [target.id]

    @pytest.mark.parametrize("q", ["a", " a ", ""])
    def test_short_query_is_rejected(self, client, q):
        response = client.get("/search", params={"q": q})
        assert response.status_code == 400
        assert response.json() == {"error": "Query must be at least 2 characters"}

    def test_missing_query_is_rejected(self, client):
        response = client.get("/search")
        assert response.status_code == 400

    def test_invalid_type(self, client):
        response = client.get("/search", params={"q": "home", "type": "everything"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid search type"}

    def test_source_failure_is_a_generic_error(self, client, make_user, monkeypatch):
        user = make_user(Role.USER)

        def broken(self, query, principal):
            raise OSError("disk on fire")

        monkeypatch.setattr(FilesSource, "search", broken)
        response = client.get("/search", params={"q": "home"}, headers=user.headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Search failed"}

    def test_source_failure_degrades_when_configured(self, client, make_user, monkeypatch):
        user = make_user(Role.USER)
        monkeypatch.setenv("SEARCH_FAILURE_POLICY", "degrade")

        def broken(self, query, principal):
            raise OSError("disk on fire")

        monkeypatch.setattr(FilesSource, "search", broken)
        response = client.get("/search", params={"q": "home"}, headers=user.headers)

        assert response.status_code == 200
        assert [r["id"] for r in response.json()["results"]] == ["home"]
