from types import SimpleNamespace

import pytest

from db_utils import FAMOUS_TABLE, FamousPeopleRepository, clamp_limit
from errors import StoreError, StoreNotConfigured

PEOPLE = [
    {"slug": "ada-lovelace", "name": "Ada Lovelace", "bio": "Mathematician", "category": "Science"},
    {"slug": "bruce-lee", "name": "Bruce Lee", "bio": "Martial artist", "category": "Film"},
]


class FakeQuery:
    """Records the PostgREST builder calls made against one table."""

    def __init__(self, rows, error=None):
        self.rows = rows
        self.error = error
        self.calls = []

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def execute(self):
        if self.error is not None:
            raise self.error
        rows = self.rows
        for name, args, _ in self.calls:
            if name == "eq":
                rows = [row for row in rows if row.get(args[0]) == args[1]]
        return SimpleNamespace(data=rows, count=len(rows))


class FakeClient:
    def __init__(self, rows=PEOPLE, error=None):
        self.query = FakeQuery(rows, error)
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return self.query


def test_get_by_slug():
    client = FakeClient()
    person = FamousPeopleRepository(client).get_by_slug("bruce-lee")

    assert person["name"] == "Bruce Lee"
    assert client.tables == [FAMOUS_TABLE]


def test_get_by_slug_unknown():
    assert FamousPeopleRepository(FakeClient()).get_by_slug("nobody") is None


def test_list_people_applies_filters_and_paging():
    client = FakeClient()
    result = FamousPeopleRepository(client).list_people(search="ada", category="Science", limit=10, offset=5)
    calls = {name: (args, kwargs) for name, args, kwargs in client.query.calls}

    assert calls["select"] == (("*",), {"count": "exact"})
    assert "name.ilike.%ada%" in calls["or_"][0][0]
    assert calls["eq"][0] == ("category", "Science")
    assert calls["order"][0] == ("name",)
    assert calls["range"][0] == (5, 14)
    assert result["limit"] == 10
    assert result["offset"] == 5
    assert result["total"] == 1


def test_list_people_sanitises_search():
    client = FakeClient()
    FamousPeopleRepository(client).list_people(search="a,b(c)")
    or_filter = [args for name, args, _ in client.query.calls if name == "or_"][0][0]

    assert "a b c" in or_filter


def test_list_categories():
    assert FamousPeopleRepository(FakeClient()).list_categories() == ["Film", "Science"]


def test_unconfigured_store():
    repository = FamousPeopleRepository(None)
    with pytest.raises(StoreNotConfigured):
        repository.get_by_slug("ada-lovelace")
    with pytest.raises(StoreNotConfigured):
        repository.list_people()


def test_query_failure_is_store_error():
    repository = FamousPeopleRepository(FakeClient(error=RuntimeError("connection reset")))
    with pytest.raises(StoreError):
        repository.list_categories()


def test_clamp_limit():
    assert clamp_limit(None) == 20
    assert clamp_limit(500) == 100
    assert clamp_limit(80, search="ada") == 50
    assert clamp_limit(0) == 20
