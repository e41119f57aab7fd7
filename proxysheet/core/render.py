from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from PIL import Image, ImageDraw, ImageFont

from .errors import ImageLoadError
from .geometry import (
    all_slot_rects, bleed_inset_px, compute_layout_metrics, inner_rect,
    page_pixel_size, slot_rect, slot_size_mm,
)
from .loader import ImageLoader
from .plan import page_images
from .types import ExportOptions, LayoutMetrics, LayoutPage, SlotRect
from .units import round_px

BACKGROUND = "#ffffff"
BLEED_BACKGROUND = "#000000"
CUT_GUIDE_COLOR = "#00ff00"
# ガイド線をグリッド外側へはみ出させる長さ（カード短辺に対する割合）
CUT_GUIDE_EXTEND_RATIO = 0.02
DEBUG_TEXT_COLOR = "#ff0000"

PLACEHOLDER_FILL = "#d9d9d9"
PLACEHOLDER_LINE = "#8c8c8c"

ImageSource = Union[str, Image.Image, None]

@dataclass
class CanvasPage:
    image: Image.Image
    draw: ImageDraw.ImageDraw
    metrics: LayoutMetrics
    options: ExportOptions

    @property
    def page_px(self) -> Tuple[int, int]:
        return self.image.size

def create_blank_canvas_page(options: ExportOptions, background: str = BACKGROUND) -> CanvasPage:
    w, h = page_pixel_size(options)
    im = Image.new("RGB", (w, h), background)
    return CanvasPage(image=im, draw=ImageDraw.Draw(im), metrics=compute_layout_metrics(options), options=options)

def create_card_slot(page: CanvasPage, position: int, add_black_background: bool = False) -> SlotRect:
    rect = slot_rect(page.metrics, page.options.dpi, position)
    if add_black_background:
        add_slot_background(page, rect, BLEED_BACKGROUND)
    return rect

def add_slot_background(page: CanvasPage, slot: SlotRect, color: str = BLEED_BACKGROUND) -> None:
    if slot.w <= 0 or slot.h <= 0:
        return
    page.draw.rectangle([slot.x, slot.y, slot.right - 1, slot.bottom - 1], fill=color)

def _flatten_to_rgb(pil_img: Image.Image) -> Image.Image:
    if pil_img.mode == "RGB":
        return pil_img
    # 透過は白背景で合成
    if pil_img.mode == "P":
        pil_img = pil_img.convert("RGBA")
    if pil_img.mode in ("RGBA", "LA"):
        bg = Image.new("RGB", pil_img.size, (255, 255, 255))
        bg.paste(pil_img, mask=pil_img.split()[-1])
        return bg
    return pil_img.convert("RGB")

def cover_rect(img_w: int, img_h: int, box: SlotRect) -> Tuple[int, int, int, int]:
    """縦横比維持で箱を覆う（はみ出しは切り取る）。戻り値は (x, y, w, h) in pixels."""
    if img_w <= 0 or img_h <= 0:
        return (box.x, box.y, box.w, box.h)
    scale = max(box.w / img_w, box.h / img_h)
    w = round_px(img_w * scale)
    h = round_px(img_h * scale)
    x = box.x + round_px((box.w - w) / 2)
    y = box.y + round_px((box.h - h) / 2)
    return (x, y, w, h)

def draw_placeholder(page: CanvasPage, slot: SlotRect) -> None:
    if slot.w <= 0 or slot.h <= 0:
        return
    x0, y0, x1, y1 = slot.x, slot.y, slot.right - 1, slot.bottom - 1
    d = page.draw
    d.rectangle([x0, y0, x1, y1], fill=PLACEHOLDER_FILL, outline=PLACEHOLDER_LINE, width=2)
    d.line([(x0, y0), (x1, y1)], fill=PLACEHOLDER_LINE, width=2)
    d.line([(x0, y1), (x1, y0)], fill=PLACEHOLDER_LINE, width=2)

def draw_card_into_slot(page: CanvasPage, slot: SlotRect, img: Optional[Image.Image]) -> None:
    """塗り足し分内側の領域へカバーフィットで描く。画像が無ければプレースホルダ"""
    if img is None:
        draw_placeholder(page, slot)
        return
    inner = inner_rect(slot, bleed_inset_px(page.options, page.metrics))
    if inner.w <= 0 or inner.h <= 0:
        return
    dx, dy, dw, dh = cover_rect(img.width, img.height, inner)
    resized = _flatten_to_rgb(img).resize((max(1, dw), max(1, dh)), Image.Resampling.LANCZOS)
    left = inner.x - dx
    top = inner.y - dy
    cropped = resized.crop((left, top, left + inner.w, top + inner.h))
    page.image.paste(cropped, (inner.x, inner.y))

async def load_or_none(
    loader: ImageLoader,
    url: str,
    log_cb: Optional[Callable[[str], None]] = None,
) -> Optional[Image.Image]:
    try:
        return await loader.load(url)
    except ImageLoadError as e:
        if log_cb:
            log_cb(f"画像を読み込めません（プレースホルダを使用）: {e}")
        return None

async def place_card_centered_into_slot(
    page: CanvasPage,
    slot: SlotRect,
    source: ImageSource,
    loader: Optional[ImageLoader] = None,
    log_cb: Optional[Callable[[str], None]] = None,
) -> None:
    if isinstance(source, str):
        if loader is None:
            raise ValueError("loader is required for url sources")
        source = await load_or_none(loader, source, log_cb)
    draw_card_into_slot(page, slot, source)

def _debug_font():
    return ImageFont.load_default(size=16)

def draw_slot_size_label(page: CanvasPage, slot: SlotRect) -> None:
    w_mm, h_mm = slot_size_mm(slot, page.options.dpi)
    text = f"({w_mm:.2f}mm, {h_mm:.2f}mm)"
    font = _debug_font()
    left, top, right, bottom = page.draw.textbbox((0, 0), text, font=font)
    x = slot.x + slot.w / 2 - (right - left) / 2
    y = slot.y - 5 - bottom
    page.draw.text((x, y), text, fill=DEBUG_TEXT_COLOR, font=font)

def draw_cut_guidelines(
    page: CanvasPage,
    slot: SlotRect,
    color: str = CUT_GUIDE_COLOR,
    extend_px: Optional[int] = None,
    width: int = 1,
) -> None:
    """スロット境界上に1pxのカット線を引く。

    線は塗り足しで内側にずらさずスロットの外周に置くので、隣のスロットの
    線と同じ画素に重なり1本に見える。
    """
    if extend_px is None:
        extend_px = round_px(min(slot.w, slot.h) * CUT_GUIDE_EXTEND_RATIO)
    if page.options.debug_sizes_on_print:
        draw_slot_size_label(page, slot)

    x0, y0, x1, y1 = slot.x, slot.y, slot.right, slot.bottom
    d = page.draw
    d.line([(x0 - extend_px, y0), (x1 + extend_px, y0)], fill=color, width=width)
    d.line([(x0 - extend_px, y1), (x1 + extend_px, y1)], fill=color, width=width)
    d.line([(x0, y0 - extend_px), (x0, y1 + extend_px)], fill=color, width=width)
    d.line([(x1, y0 - extend_px), (x1, y1 + extend_px)], fill=color, width=width)

async def render_layout_page(
    layout: LayoutPage,
    options: ExportOptions,
    loader: ImageLoader,
    background: str = BACKGROUND,
    log_cb: Optional[Callable[[str], None]] = None,
) -> CanvasPage:
    page = create_blank_canvas_page(options, background)
    cells = page_images(layout)
    slots: List[SlotRect] = all_slot_rects(page.metrics, options.dpi)[:len(cells)]

    # ページ内の読み込みは互いに独立なのでまとめて待つ
    images = await asyncio.gather(*(load_or_none(loader, c.url, log_cb) for c in cells))

    for slot, img in zip(slots, images):
        if options.bleed > 0:
            add_slot_background(page, slot, BLEED_BACKGROUND)
        draw_card_into_slot(page, slot, img)

    # ガイドは全カードの描画後にまとめて引く
    if options.draw_cut_margins:
        for slot in slots:
            draw_cut_guidelines(page, slot)
    return page
