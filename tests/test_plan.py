from proxysheet.core.plan import build_layout, chunk_cards, page_images
from proxysheet.core.types import CardImage, LayoutImage, LayoutPage

def _cards(n, back=None):
    return [CardImage(name=f"c{i}", front_url=f"https://img/f{i}.png", back_url=back) for i in range(n)]

def test_chunk_cards_by_nine():
    chunks = chunk_cards(_cards(20))
    assert [len(c) for c in chunks] == [9, 9, 2]

def test_build_layout_front_back_pairs():
    pages = build_layout(_cards(10))
    assert [p.id for p in pages] == ["front-1", "back-1", "front-2", "back-2"]
    assert [p.role for p in pages] == ["front", "back", "front", "back"]
    assert len(pages[0].images) == 9
    assert len(pages[2].images) == 1

def test_back_page_is_reversed():
    pages = build_layout(_cards(3), default_back="https://img/back.png")
    front, back = pages
    assert [i.name for i in front.images] == ["c0", "c1", "c2"]
    assert [i.name for i in back.images] == ["c2", "c1", "c0"]

def test_back_url_resolution():
    cards = [
        CardImage(name="dfc", front_url="https://img/a.png", back_url="https://img/a-back.png"),
        CardImage(name="plain", front_url="https://img/b.png"),
    ]
    back = build_layout(cards, default_back="https://img/back.png")[1]
    plain, dfc = back.images
    assert dfc.url == "https://img/a-back.png"
    assert dfc.is_default_back is False
    assert plain.url == "https://img/back.png"
    assert plain.is_default_back is True

def test_back_falls_back_to_front_without_default():
    back = build_layout(_cards(1))[1]
    assert back.images[0].url == "https://img/f0.png"
    assert back.images[0].is_default_back is False

def test_page_images_caps_at_nine():
    page = LayoutPage(id="front-1", role="front", images=[LayoutImage(url=f"u{i}") for i in range(12)])
    assert len(page_images(page)) == 9
