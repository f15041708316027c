"""Tests for remote path helpers."""

from __future__ import annotations

import pytest

from remote_mirror._errors import InvalidPath
from remote_mirror._path import (
    ROOT,
    check_name,
    is_within,
    join_remote,
    normalize_remote,
    parent_of,
    quote_remote,
    relative_parts,
    remote_url,
)


class TestNormalizeRemote:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("", "/"),
            ("/", "/"),
            ("a/b", "/a/b"),
            ("/a/b/", "/a/b"),
            ("//a///b", "/a/b"),
            ("a\\b\\c", "/a/b/c"),
            ("/./a/./b", "/a/b"),
            ("/@CBA/addons", "/@CBA/addons"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert normalize_remote(raw) == expected

    @pytest.mark.parametrize("raw", ["..", "/a/../b", "a/.."])
    def test_rejects_parent_segments(self, raw: str) -> None:
        with pytest.raises(InvalidPath):
            normalize_remote(raw)

    def test_rejects_null_byte(self) -> None:
        with pytest.raises(InvalidPath, match="null"):
            normalize_remote("/a\0b")


class TestCheckName:
    @pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a\\b", "a\0b"])
    def test_rejects_unsafe_names(self, name: str) -> None:
        with pytest.raises(InvalidPath):
            check_name(name)

    def test_accepts_ordinary_names(self) -> None:
        assert check_name("@CBA A3") == "@CBA A3"
        assert check_name("...hidden") == "...hidden"


class TestJoinAndParent:
    def test_join_at_root(self) -> None:
        assert join_remote(ROOT, "@CBA") == "/@CBA"

    def test_join_below_root(self) -> None:
        assert join_remote("/@CBA", "addons") == "/@CBA/addons"

    def test_parent(self) -> None:
        assert parent_of("/@CBA/addons") == "/@CBA"
        assert parent_of("/@CBA") == ROOT
        assert parent_of(ROOT) == ROOT


class TestWithin:
    def test_root_contains_everything(self) -> None:
        assert is_within(ROOT, "/a/b")
        assert is_within(ROOT, ROOT)

    def test_prefix_is_not_containment(self) -> None:
        assert is_within("/a", "/a/b")
        assert is_within("/a", "/a")
        assert not is_within("/a", "/ab")

    def test_relative_parts(self) -> None:
        assert relative_parts("/a", "/a/b/c") == ("b", "c")
        assert relative_parts("/a", "/a") == ()
        assert relative_parts(ROOT, "/x/y") == ("x", "y")

    def test_relative_parts_outside_root(self) -> None:
        with pytest.raises(InvalidPath):
            relative_parts("/a", "/b/c")


class TestWireEscaping:
    def test_at_sign_is_escaped(self) -> None:
        assert quote_remote("/@CBA/addons") == "/%40CBA/addons"

    def test_spaces_and_reserved_characters(self) -> None:
        assert quote_remote("/My Mods/a#1?.pbo") == "/My%20Mods/a%231%3F.pbo"

    def test_percent_is_escaped(self) -> None:
        assert quote_remote("/100%") == "/100%25"

    def test_remote_url(self) -> None:
        assert remote_url("ftp.example.org", 2121, "@CBA/mod.cpp") == "ftp://ftp.example.org:2121/%40CBA/mod.cpp"
