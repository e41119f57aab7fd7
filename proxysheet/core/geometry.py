from __future__ import annotations
from typing import List, Tuple

from .errors import InvalidPosition
from .types import ExportOptions, LayoutMetrics, SlotRect
from .units import mm_to_px, paper_size_inches, paper_size_mm, px_to_mm, round_px

COLS = 3
ROWS = 3
SLOTS_PER_PAGE = COLS * ROWS

# MTGのトリムサイズ (mm)。塗り足しはこの外側に付く
CARD_W_MM = 63.0
CARD_H_MM = 88.0

MIN_SCALE = 0.95
MAX_SCALE = 1.10

def clamp_scale(value) -> float:
    if value is None:
        value = 1.0
    return max(MIN_SCALE, min(MAX_SCALE, float(value)))

def compute_layout_metrics(opts: ExportOptions) -> LayoutMetrics:
    bleed = max(0.0, opts.bleed)
    card_w = CARD_W_MM + 2 * bleed
    card_h = CARD_H_MM + 2 * bleed
    page_w, page_h = paper_size_mm(opts.paper, opts.orientation)
    scale = clamp_scale(opts.print_scale_compensation)

    # 補正後のグリッドをページ中央に置く余白。ここで scale 済みなので
    # ピクセル変換時に再度 scale を掛けてはいけない
    margin_x = max(0.0, (page_w - COLS * card_w * scale) / 2)
    margin_y = max(0.0, (page_h - ROWS * card_h * scale) / 2)

    return LayoutMetrics(
        page_w_mm=page_w,
        page_h_mm=page_h,
        card_w_mm=card_w,
        card_h_mm=card_h,
        margin_x_mm=margin_x,
        margin_y_mm=margin_y,
        offset_x_mm=opts.alignment_offset_x or 0.0,
        offset_y_mm=opts.alignment_offset_y or 0.0,
        scale=scale,
    )

def page_pixel_size(opts: ExportOptions) -> Tuple[int, int]:
    w_in, h_in = paper_size_inches(opts.paper, opts.orientation)
    return (round_px(w_in * opts.dpi), round_px(h_in * opts.dpi))

def card_pixel_size(metrics: LayoutMetrics, dpi: int) -> Tuple[int, int]:
    return (
        round_px(mm_to_px(metrics.card_w_mm, dpi) * metrics.scale),
        round_px(mm_to_px(metrics.card_h_mm, dpi) * metrics.scale),
    )

def grid_origin_px(metrics: LayoutMetrics, dpi: int) -> Tuple[int, int]:
    return (
        round_px(mm_to_px(metrics.margin_x_mm + metrics.offset_x_mm, dpi)),
        round_px(mm_to_px(metrics.margin_y_mm + metrics.offset_y_mm, dpi)),
    )

def slot_rect(metrics: LayoutMetrics, dpi: int, position: int) -> SlotRect:
    """位置 1..9（左→右、上→下）のスロット矩形をピクセルで返す。

    丸めはカードサイズと原点で一度ずつだけ行い、列・行は整数の加算で
    求めるので隣り合うスロットの間に隙間も重なりも生じない。
    """
    if isinstance(position, float) and position.is_integer():
        position = int(position)
    if isinstance(position, bool) or not isinstance(position, int):
        raise InvalidPosition(f"position must be an integer 1..9: {position!r}")
    if position < 1 or position > SLOTS_PER_PAGE:
        raise InvalidPosition(f"position must be an integer 1..9: {position}")

    card_w, card_h = card_pixel_size(metrics, dpi)
    origin_x, origin_y = grid_origin_px(metrics, dpi)
    idx = position - 1
    col = idx % COLS
    row = idx // COLS
    return SlotRect(x=origin_x + col * card_w, y=origin_y + row * card_h, w=card_w, h=card_h)

def all_slot_rects(metrics: LayoutMetrics, dpi: int) -> List[SlotRect]:
    return [slot_rect(metrics, dpi, p) for p in range(1, SLOTS_PER_PAGE + 1)]

def bleed_inset_px(opts: ExportOptions, metrics: LayoutMetrics) -> int:
    return round_px(mm_to_px(max(0.0, opts.bleed), opts.dpi) * metrics.scale)

def inner_rect(slot: SlotRect, inset: int) -> SlotRect:
    return SlotRect(x=slot.x + inset, y=slot.y + inset, w=slot.w - 2 * inset, h=slot.h - 2 * inset)

def slot_size_mm(slot: SlotRect, dpi: int) -> Tuple[float, float]:
    # スロットは補正済みのサイズなので scale で割り戻さない
    return (px_to_mm(slot.w, dpi), px_to_mm(slot.h, dpi))
