"""Unit tests for the render cache."""

from __future__ import annotations

import pytest


def _output(text: str):
    from diagrender.models import RenderOutput

    return RenderOutput(content=text.encode())


@pytest.mark.unit
@pytest.mark.core
def test_generate_key_includes_path_and_digest() -> None:
    """Key is path plus sha256 of content."""
    import hashlib

    from diagrender.cache import RenderCache

    key = RenderCache.generate_key("a/b.mmd", "graph TD; A-->B")

    digest = hashlib.sha256(b"graph TD; A-->B").hexdigest()
    assert key == f"a/b.mmd:{digest}"
    assert RenderCache.generate_key("a/b.mmd", "graph TD; A-->C") != key
    assert RenderCache.generate_key("c.mmd", "graph TD; A-->B") != key


@pytest.mark.unit
@pytest.mark.core
def test_get_miss_returns_none() -> None:
    from diagrender.cache import RenderCache

    assert RenderCache().get("missing") is None


@pytest.mark.unit
@pytest.mark.core
def test_evicts_least_recently_used() -> None:
    """Inserting past capacity drops the oldest entry."""
    from diagrender.cache import RenderCache

    cache = RenderCache(max_size=2)
    cache.set("a", _output("a"))
    cache.set("b", _output("b"))
    cache.set("c", _output("c"))

    assert len(cache) == 2
    assert not cache.has("a")
    assert cache.keys() == ["b", "c"]


@pytest.mark.unit
@pytest.mark.core
def test_get_promotes_entry() -> None:
    """A hit makes the entry most recent so it survives the next eviction."""
    from diagrender.cache import RenderCache

    cache = RenderCache(max_size=2)
    cache.set("a", _output("a"))
    cache.set("b", _output("b"))
    assert cache.get("a") == _output("a")
    cache.set("c", _output("c"))

    assert cache.has("a")
    assert not cache.has("b")


@pytest.mark.unit
@pytest.mark.core
def test_has_does_not_promote() -> None:
    from diagrender.cache import RenderCache

    cache = RenderCache(max_size=2)
    cache.set("a", _output("a"))
    cache.set("b", _output("b"))
    assert cache.has("a")
    cache.set("c", _output("c"))

    assert not cache.has("a")


@pytest.mark.unit
@pytest.mark.core
def test_set_existing_key_replaces_and_promotes() -> None:
    from diagrender.cache import RenderCache

    cache = RenderCache(max_size=2)
    cache.set("a", _output("a"))
    cache.set("b", _output("b"))
    cache.set("a", _output("a2"))

    assert len(cache) == 2
    assert cache.keys() == ["b", "a"]
    assert cache.get("a") == _output("a2")


@pytest.mark.unit
@pytest.mark.core
def test_clear() -> None:
    from diagrender.cache import RenderCache

    cache = RenderCache()
    cache.set("a", _output("a"))
    cache.clear()

    assert len(cache) == 0


@pytest.mark.unit
@pytest.mark.core
def test_rejects_zero_capacity() -> None:
    from diagrender.cache import RenderCache

    with pytest.raises(ValueError, match="at least 1"):
        RenderCache(max_size=0)
