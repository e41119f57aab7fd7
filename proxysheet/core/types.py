from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Literal

Paper = Literal["A4", "Letter"]
Orientation = Literal["portrait", "landscape"]
Role = Literal["front", "back"]
OutputFormat = Literal["pdf", "png", "html"]

@dataclass(frozen=True)
class ExportOptions:
    dpi: int = 300
    paper: Paper = "A4"
    bleed: float = 0.0                 # mm, 片側
    margin: float = 10.0               # mm（参考値、レイアウトでは未使用）
    orientation: Orientation = "portrait"
    alignment_offset_x: float = 0.0    # mm, 符号付き
    alignment_offset_y: float = 0.0
    # プリンタの自動縮小を打ち消す倍率。None = 1.0
    print_scale_compensation: Optional[float] = None
    draw_cut_margins: bool = True
    upscale_enabled: bool = False
    debug_sizes_on_print: bool = False

@dataclass(frozen=True)
class LayoutMetrics:
    page_w_mm: float
    page_h_mm: float
    card_w_mm: float
    card_h_mm: float
    margin_x_mm: float
    margin_y_mm: float
    offset_x_mm: float
    offset_y_mm: float
    scale: float

@dataclass(frozen=True)
class SlotRect:
    x: int
    y: int
    w: int
    h: int

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

@dataclass(frozen=True)
class CardImage:
    name: str
    front_url: str
    back_url: Optional[str] = None

@dataclass
class LayoutImage:
    url: str
    name: Optional[str] = None
    is_default_back: bool = False

@dataclass
class LayoutPage:
    id: str
    role: Role
    images: list[LayoutImage] = field(default_factory=list)

@dataclass(frozen=True)
class UpscaleProgress:
    current: int
    total: int
    done: bool
