import asyncio

import pytest

from proxysheet.core.errors import EnhancementError, EnhancementUnavailable, ExportCancelled
from proxysheet.core.types import LayoutImage, LayoutPage
from proxysheet.core.upscale import (
    ProgressChannel, eligible_urls, upscale_image_with_cache, upscale_pages,
)

BACK = "https://img.example/cardback.jpg"

class FakeEnhancer:
    def __init__(self, available=True, fail=()):
        self.available = available
        self.fail = set(fail)
        self.calls = []
        self.probes = 0

    async def probe_availability(self, cancel_cb=None):
        self.probes += 1
        return self.available

    async def enhance(self, url, params=None):
        self.calls.append(url)
        if url in self.fail:
            raise EnhancementError("boom")
        return f"data:image/png;base64,up-{url}"

class DictCache:
    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

def _page(role, *urls, default_back=False):
    return LayoutPage(
        id=f"{role}-1",
        role=role,
        images=[LayoutImage(url=u, name=u, is_default_back=default_back and u == BACK) for u in urls],
    )

def _run(pages, enhancer, **kwargs):
    events = []
    result = asyncio.run(upscale_pages(pages, enhancer, progress_cb=events.append, **kwargs))
    return result, events

def test_one_call_per_distinct_url():
    pages = [_page("front", "a", "b", "a", "c"), _page("front", "b", "c", "d")]
    enhancer = FakeEnhancer()
    result, events = _run(pages, enhancer)
    assert sorted(enhancer.calls) == ["a", "b", "c", "d"]
    assert len(enhancer.calls) == 4
    assert result.rewritten == {u: f"data:image/png;base64,up-{u}" for u in "abcd"}

def test_progress_sequence():
    pages = [_page("front", "a", "b", "a"), _page("front", "b", "c")]
    result, events = _run(pages, FakeEnhancer())
    assert [(e.current, e.total, e.done) for e in events] == [
        (0, 3, False), (1, 3, False), (2, 3, False), (3, 3, True),
    ]
    assert sum(1 for e in events if e.done) == 1
    currents = [e.current for e in events]
    assert currents == sorted(currents)

def test_empty_batch_emits_single_done_event():
    result, events = _run([], FakeEnhancer())
    assert [(e.current, e.total, e.done) for e in events] == [(0, 0, True)]
    assert result.pages == []

def test_repeated_url_rewritten_everywhere():
    pages = [_page("front", "x", "x", "x"), _page("front", "y", "x"), _page("front", "x")]
    enhancer = FakeEnhancer()
    result, _ = _run(pages, enhancer)
    assert enhancer.calls.count("x") == 1
    rewritten = [img.url for p in result.pages for img in p.images if img.name == "x"]
    assert len(rewritten) == 5
    assert set(rewritten) == {"data:image/png;base64,up-x"}

def test_default_back_excluded_only_on_back_pages():
    pages = [_page("back", BACK, "b1", default_back=True)]
    enhancer = FakeEnhancer()
    result, _ = _run(pages, enhancer)
    assert enhancer.calls == ["b1"]
    assert result.pages[0].images[0].url == BACK

    front = LayoutPage(id="front-1", role="front", images=[LayoutImage(url=BACK, is_default_back=True)])
    enhancer = FakeEnhancer()
    _run([front], enhancer)
    assert enhancer.calls == [BACK]

def test_custom_default_back_predicate():
    pages = [_page("front", BACK), _page("back", BACK, "b1")]
    enhancer = FakeEnhancer()
    result, events = _run(pages, enhancer, is_default_back=lambda img: img.url == BACK)
    assert enhancer.calls == [BACK, "b1"]
    # 裏面の既定画像は元のまま、表面の同じURLは置き換わる
    assert result.pages[0].images[0].url == f"data:image/png;base64,up-{BACK}"
    assert result.pages[1].images[0].url == BACK
    assert eligible_urls(pages, lambda img: img.url == BACK) == [BACK, "b1"]

def test_failure_keeps_original_and_continues():
    pages = [_page("front", "a", "bad", "c", "bad")]
    enhancer = FakeEnhancer(fail={"bad"})
    logs = []
    result, events = _run(pages, enhancer, log_cb=logs.append)
    urls = [img.url for img in result.pages[0].images]
    assert urls == ["data:image/png;base64,up-a", "bad", "data:image/png;base64,up-c", "bad"]
    assert enhancer.calls.count("bad") == 1
    assert "bad" in result.failed
    assert "bad" not in result.rewritten
    assert events[-1].current == events[-1].total == 3
    assert any("bad" in m for m in logs)

def test_only_drawn_images_are_enhanced():
    urls = [f"u{i}" for i in range(12)]
    pages = [_page("front", *urls)]
    enhancer = FakeEnhancer()
    result, events = _run(pages, enhancer)
    assert enhancer.calls == urls[:9]
    assert events[-1].current == events[-1].total == 9
    assert [img.url for img in result.pages[0].images[9:]] == urls[9:]
    assert eligible_urls(pages) == urls[:9]

def test_input_pages_are_not_mutated():
    pages = [_page("front", "a", "b")]
    _run(pages, FakeEnhancer())
    assert [img.url for img in pages[0].images] == ["a", "b"]

def test_unavailable_service():
    enhancer = FakeEnhancer(available=False)
    with pytest.raises(EnhancementUnavailable):
        _run([_page("front", "a")], enhancer)
    assert enhancer.calls == []

def test_cancel_between_items():
    pages = [_page("front", "a", "b", "c")]
    enhancer = FakeEnhancer()
    with pytest.raises(ExportCancelled):
        asyncio.run(upscale_pages(pages, enhancer, cancel_cb=lambda: len(enhancer.calls) >= 1))
    assert enhancer.calls == ["a"]

def test_cancel_emits_final_done():
    pages = [_page("front", "a", "b", "c")]
    enhancer = FakeEnhancer()
    events = []
    with pytest.raises(ExportCancelled):
        asyncio.run(upscale_pages(
            pages, enhancer, progress_cb=events.append, cancel_cb=lambda: len(enhancer.calls) >= 2,
        ))
    assert events[-1].done is True
    assert events[-1].current == 2
    assert sum(1 for e in events if e.done) == 1

def test_progress_channel_finish_once():
    events = []
    ch = ProgressChannel(2, events.append)
    ch.emit(0)
    ch.finish()
    ch.finish()
    ch.emit(2)
    assert [(e.current, e.done) for e in events] == [(0, False), (2, True)]

def test_upscale_image_with_cache():
    cache = DictCache()
    enhancer = FakeEnhancer()
    first = asyncio.run(upscale_image_with_cache("a", True, enhancer, cache))
    second = asyncio.run(upscale_image_with_cache("a", True, enhancer, cache))
    assert first == second == "data:image/png;base64,up-a"
    assert enhancer.calls == ["a"]
    assert cache.data == {"sd:upscaled:a": first}

def test_upscale_image_with_cache_passthrough():
    cache = DictCache()
    assert asyncio.run(upscale_image_with_cache("a", False, FakeEnhancer(), cache)) == "a"
    assert asyncio.run(upscale_image_with_cache("a", True, FakeEnhancer(available=False), cache)) == "a"
    assert asyncio.run(upscale_image_with_cache("bad", True, FakeEnhancer(fail={"bad"}), cache)) == "bad"
    assert cache.data == {}
