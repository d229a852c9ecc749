from __future__ import annotations

import pytest

from dngSync.core.context import BlacklistFilter, CrawlContext, origin_of


def test_normalize_resolves_relative_and_strips_fragment() -> None:
    ctx = CrawlContext("https://DNG.example:9443/rm/whatever")
    assert ctx.origin == "https://dng.example:9443"
    assert ctx.normalize("/rm/resources/R1#frag") == "https://dng.example:9443/rm/resources/R1"
    assert ctx.normalize("https://other.example/x#y") == "https://other.example/x"


@pytest.mark.parametrize("bad", ["", "   ", "http://[::1", "https://dng.example:notaport/x"])
def test_normalize_rejects_unparseable(bad: str) -> None:
    ctx = CrawlContext("https://dng.example")
    with pytest.raises(ValueError):
        ctx.normalize(bad)


def test_claim_and_foreign_warning_once() -> None:
    ctx = CrawlContext("https://dng.example")
    assert ctx.claim("https://dng.example/a")
    assert not ctx.claim("https://dng.example/a")
    assert ctx.is_foreign("https://other.example/a")
    assert ctx.first_warning_for("https://other.example/a")
    assert not ctx.first_warning_for("https://other.example/b")
    assert origin_of("HTTPS://Other.Example/b") == "https://other.example"


def test_blacklist_matches_path_and_query_prefixes() -> None:
    blacklist = BlacklistFilter()
    assert blacklist.matches("https://dng.example/rm/accessControl/abc")
    assert blacklist.matches("https://dng.example/rm/views?oslc.query=true")
    assert blacklist.matches("https://dng.example/rm/folders/null")
    assert not blacklist.matches("https://dng.example/rm/views/abc")
    assert not blacklist.matches("https://dng.example/rm/resources/R1")
    assert not BlacklistFilter(()).matches("https://dng.example/rm/web")
