"""Tests for listing parsing and dialect fallback."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from remote_mirror._client import Dialect
from remote_mirror._errors import ListingError
from remote_mirror._listing import (
    ListingParser,
    parse_facts,
    parse_facts_timestamp,
    parse_names,
    parse_unix,
    parse_unix_timestamp,
)
from tests.fake_remote import MTIME, FakeClient

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestFactsDialect:
    def test_files_and_directories(self) -> None:
        entries = parse_facts(
            [
                "type=cdir;modify=20240101000000; .",
                "type=pdir;modify=20240101000000; ..",
                "type=dir;modify=20240101000000; addons\r\n",
                "type=file;size=1024;modify=20240102030405; mod.cpp",
            ],
            "/@CBA",
        )
        assert [(e.name, e.path, e.is_dir, e.size) for e in entries] == [
            ("addons", "/@CBA/addons", True, 0),
            ("mod.cpp", "/@CBA/mod.cpp", False, 1024),
        ]
        assert entries[1].modified_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_fact_keys_are_case_insensitive(self) -> None:
        (entry,) = parse_facts(["Type=file;Size=7;Modify=20240101000000; a.pbo"], "/")
        assert entry.path == "/a.pbo"
        assert entry.size == 7

    def test_names_with_spaces(self) -> None:
        (entry,) = parse_facts(["type=file;size=1; My File.txt"], "/")
        assert entry.name == "My File.txt"

    def test_missing_size_is_zero(self) -> None:
        (entry,) = parse_facts(["type=file; a"], "/")
        assert entry.size == 0

    def test_rejects_non_fact_lines(self) -> None:
        with pytest.raises(ValueError):
            parse_facts(["-rw-r--r-- 1 o g 5 Jan 01 2024 a"], "/")

    def test_rejects_missing_type(self) -> None:
        with pytest.raises(ValueError, match="type"):
            parse_facts(["size=5; a"], "/")

    def test_skips_unsafe_names(self) -> None:
        assert parse_facts(["type=file;size=1; a/b"], "/") == []

    def test_blank_lines_ignored(self) -> None:
        assert parse_facts(["", "\r\n"], "/") == []


class TestUnixDialect:
    def test_files_directories_and_links(self) -> None:
        entries = parse_unix(
            [
                "total 12",
                "drwxr-xr-x   2 owner group     4096 Jan 10 2023 addons",
                "-rw-r--r--   1 owner group      512 Mar  5 14:30 mod.cpp",
                "lrwxrwxrwx   1 owner group        9 Mar  5 14:30 latest -> addons/a",
            ],
            "/@CBA",
            now=NOW,
        )
        assert [(e.name, e.is_dir, e.size) for e in entries] == [
            ("addons", True, 0),
            ("mod.cpp", False, 512),
            ("latest", False, 9),
        ]
        assert entries[0].modified_at == datetime(2023, 1, 10, tzinfo=timezone.utc)
        assert entries[1].modified_at == datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)

    def test_rejects_other_layouts(self) -> None:
        with pytest.raises(ValueError):
            parse_unix(["type=file;size=1; a"], "/", now=NOW)


class TestTimestamps:
    def test_facts_timestamp(self) -> None:
        assert parse_facts_timestamp("20240101120000.123") == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        assert parse_facts_timestamp("garbage") is None
        assert parse_facts_timestamp("20241399000000") is None

    def test_future_yearless_date_belongs_to_last_year(self) -> None:
        assert parse_unix_timestamp("Dec", "24", "10:00", now=NOW) == datetime(2023, 12, 24, 10, tzinfo=timezone.utc)

    def test_unknown_month(self) -> None:
        assert parse_unix_timestamp("Foo", "1", "2024", now=NOW) is None


class TestNamesDialect:
    def test_reduces_paths_to_names(self) -> None:
        assert parse_names(["a.pbo\r\n", "/@CBA/b.pbo", "addons/", ".", ".."]) == ["a.pbo", "b.pbo", "addons"]


class TestListingParser:
    @pytest.fixture
    def client(self) -> FakeClient:
        return FakeClient({"/@CBA/addons/a.pbo": b"1234", "/@CBA/mod.cpp": b"x"})

    def _list(self, client: FakeClient, parser: ListingParser, path: str) -> tuple:
        async def scenario() -> tuple:
            session = await client.open_session()
            return await parser.list_directory(session, path)

        return asyncio.run(scenario())

    @pytest.mark.parametrize("dialect", list(Dialect))
    def test_each_dialect_alone(self, client: FakeClient, dialect: Dialect) -> None:
        client.supported = {dialect}
        entries = self._list(client, ListingParser(), "/@CBA")
        assert [(e.name, e.is_dir, e.size) for e in entries] == [("addons", True, 0), ("mod.cpp", False, 1)]

    def test_names_dialect_sizes_files(self, client: FakeClient) -> None:
        client.supported = {Dialect.NAMES}
        (entry,) = self._list(client, ListingParser(), "/@CBA/addons")
        assert entry.size == 4
        assert entry.modified_at == MTIME

    def test_names_dialect_lost_lookup_means_directory(self, client: FakeClient) -> None:
        client.supported = {Dialect.NAMES}
        client.failing_lookups.add("/@CBA/mod.cpp")
        client.put("/@CBA/readme.txt", b"hello")
        entries = self._list(client, ListingParser(), "/@CBA")
        assert [(e.name, e.is_dir, e.size) for e in entries] == [
            ("addons", True, 0),
            ("mod.cpp", True, 0),
            ("readme.txt", False, 5),
        ]

    def test_falls_back_in_order(self, client: FakeClient) -> None:
        client.supported = {Dialect.UNIX, Dialect.NAMES}
        entries = self._list(client, ListingParser(), "/@CBA")
        assert entries[1].size == 1

    def test_all_dialects_failing(self, client: FakeClient) -> None:
        client.failing_paths.add("/@CBA")
        with pytest.raises(ListingError) as excinfo:
            self._list(client, ListingParser(), "/@CBA")
        assert excinfo.value.path == "/@CBA"
        assert [a.split(":")[0] for a in excinfo.value.attempts] == ["FACTS", "UNIX", "NAMES"]

    def test_attempt_reports_parse_errors(self, client: FakeClient) -> None:
        async def scenario():
            session = await client.open_session()
            # Unix lines fed to the facts parser: the dialect must be reported as failed.
            session.fetch_listing = _returning(["-rw-r--r-- 1 o g 5 Jan 01 2024 a"])  # type: ignore[method-assign]
            return await ListingParser().attempt(session, "/", Dialect.FACTS)

        result = asyncio.run(scenario())
        assert not result.ok
        assert result.dialect is Dialect.FACTS

    def test_requires_a_dialect(self) -> None:
        with pytest.raises(ValueError):
            ListingParser(())


def _returning(lines: list[str]):
    async def fetch(path: str, dialect: Dialect) -> list[str]:
        return lines

    return fetch
