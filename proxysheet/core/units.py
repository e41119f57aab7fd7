from __future__ import annotations
import math
from typing import Tuple

from .types import Orientation, Paper

MM_PER_INCH = 25.4

# 用紙サイズ（縦向き、インチ）
A4_IN = (210 / MM_PER_INCH, 297 / MM_PER_INCH)
LETTER_IN = (8.5, 11.0)

def mm_to_inches(mm: float) -> float:
    return mm / MM_PER_INCH

def inches_to_mm(inches: float) -> float:
    return inches * MM_PER_INCH

def mm_to_px(mm: float, dpi: int) -> float:
    """丸めない。丸めはピクセル単位の最終段でだけ行う"""
    return mm / MM_PER_INCH * dpi

def round_px(value: float) -> int:
    """0.5は常に正の方向へ丸める（負の中央寄せオフセットでも偶数丸めにしない）"""
    return math.floor(value + 0.5)

def px_to_mm(px: float, dpi: int, scale: float = 1.0) -> float:
    """ピクセルをmmに戻す。scale は補正倍率を掛けていない値にだけ渡すこと"""
    return px / (dpi * scale) * MM_PER_INCH

def paper_size_inches(paper: Paper, orientation: Orientation) -> Tuple[float, float]:
    w, h = A4_IN if paper == "A4" else LETTER_IN
    if orientation == "landscape":
        return (h, w)
    return (w, h)

def paper_size_mm(paper: Paper, orientation: Orientation) -> Tuple[float, float]:
    w, h = paper_size_inches(paper, orientation)
    return (inches_to_mm(w), inches_to_mm(h))
