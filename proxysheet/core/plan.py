from __future__ import annotations
from typing import List, Optional

from .geometry import SLOTS_PER_PAGE
from .types import CardImage, LayoutImage, LayoutPage

def chunk_cards(cards: List[CardImage], size: int = SLOTS_PER_PAGE) -> List[List[CardImage]]:
    return [cards[i:i + size] for i in range(0, len(cards), size)]

def _back_image(card: CardImage, default_back: Optional[str]) -> LayoutImage:
    if card.back_url:
        return LayoutImage(url=card.back_url, name=card.name)
    if default_back:
        return LayoutImage(url=default_back, name=card.name, is_default_back=True)
    return LayoutImage(url=card.front_url, name=card.name)

def build_layout(cards: List[CardImage], default_back: Optional[str] = None) -> List[LayoutPage]:
    """9枚ずつ表面・裏面のページ対を作る。裏面はシート内の並びを逆順にする"""
    pages: List[LayoutPage] = []
    for n, sheet in enumerate(chunk_cards(cards), start=1):
        front = LayoutPage(
            id=f"front-{n}",
            role="front",
            images=[LayoutImage(url=c.front_url, name=c.name) for c in sheet],
        )
        back = LayoutPage(
            id=f"back-{n}",
            role="back",
            images=[_back_image(c, default_back) for c in reversed(sheet)],
        )
        pages.append(front)
        pages.append(back)
    return pages

def page_images(page: LayoutPage) -> List[LayoutImage]:
    """描画対象（先頭9枚、行優先順）"""
    return page.images[:SLOTS_PER_PAGE]
