from __future__ import annotations
import asyncio
import json
import os
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

import httpx

from .encode import build_print_html, encode_png, png_data_uri, write_pdf, write_pngs
from .enhance import EnhanceConfig, EnhancementClient, UpscaleParams
from .errors import (
    ConfigError, EncodingError, EnhancementUnavailable, ExportCancelled, UserFacingError,
)
from .loader import ImageLoader
from .plan import build_layout
from .render import CanvasPage, render_layout_page
from .types import CardImage, ExportOptions, LayoutImage, LayoutPage
from .upscale import (
    Enhancer, ImagePredicate, ProgressCallback, is_marked_default_back, upscale_pages,
)

HTTP_TIMEOUT = 30.0
OUTPUT_FORMATS = ("pdf", "png", "html")

LogCallback = Callable[[str], None]
CancelCallback = Callable[[], bool]

def _options_from_dict(raw: dict) -> ExportOptions:
    known = ExportOptions.__dataclass_fields__
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(f"未知のオプション: {', '.join(unknown)}")
    try:
        options = ExportOptions(**raw)
    except TypeError as e:
        raise ConfigError(f"オプションが不正です: {e}")
    return validate_options(options)

NUMBER_OPTIONS = ("bleed", "margin", "alignment_offset_x", "alignment_offset_y")
FLAG_OPTIONS = ("draw_cut_margins", "upscale_enabled", "debug_sizes_on_print")

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

def validate_options(options: ExportOptions) -> ExportOptions:
    if isinstance(options.dpi, bool) or not isinstance(options.dpi, int) or options.dpi <= 0:
        raise ConfigError(f"dpiは正の整数で指定してください: {options.dpi!r}")
    if options.paper not in ("A4", "Letter"):
        raise ConfigError(f"未知の用紙サイズ: {options.paper}")
    if options.orientation not in ("portrait", "landscape"):
        raise ConfigError(f"未知の向き: {options.orientation}")
    for name in NUMBER_OPTIONS:
        if not _is_number(getattr(options, name)):
            raise ConfigError(f"{name}は数値で指定してください: {getattr(options, name)!r}")
    scale = options.print_scale_compensation
    if scale is not None and not _is_number(scale):
        raise ConfigError(f"print_scale_compensationは数値かnullで指定してください: {scale!r}")
    for name in FLAG_OPTIONS:
        if not isinstance(getattr(options, name), bool):
            raise ConfigError(f"{name}はtrue/falseで指定してください: {getattr(options, name)!r}")
    return options

def validate_and_build_cards(raw_cards: list[dict]) -> list[CardImage]:
    cards: list[CardImage] = []
    for i, r in enumerate(raw_cards, start=1):
        front = r.get("front_url")
        if not front:
            raise ConfigError(f"{i}枚目のカードに front_url がありません")
        cards.append(CardImage(name=r.get("name") or f"card-{i}", front_url=front, back_url=r.get("back_url")))
    return cards

def validate_and_build_pages(raw_pages: list[dict]) -> list[LayoutPage]:
    pages: list[LayoutPage] = []
    for i, r in enumerate(raw_pages, start=1):
        role = r.get("role", "front")
        if role not in ("front", "back"):
            raise ConfigError(f"未知のrole: {role}")
        images: list[LayoutImage] = []
        for img in r.get("images", []):
            if not img.get("url"):
                raise ConfigError(f"{i}ページ目に url の無い画像があります")
            images.append(LayoutImage(
                url=img["url"],
                name=img.get("name"),
                is_default_back=bool(img.get("is_default_back", False)),
            ))
        pages.append(LayoutPage(id=r.get("id") or f"{role}-{i}", role=role, images=images))
    return pages

@asynccontextmanager
async def _http_session(http: Optional[httpx.AsyncClient]):
    if http is not None:
        yield http
        return
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True) as client:
        yield client

async def enhance_if_enabled(
    pages: List[LayoutPage],
    options: ExportOptions,
    enhancer: Enhancer,
    *,
    params: Optional[UpscaleParams] = None,
    is_default_back: ImagePredicate = is_marked_default_back,
    upscale_progress_cb: Optional[ProgressCallback] = None,
    cancel_cb: Optional[CancelCallback] = None,
    log_cb: Optional[LogCallback] = None,
) -> List[LayoutPage]:
    """高画質化が有効なら一括で1回だけ実行する。サービスが無ければ元画像のまま続行"""
    if not options.upscale_enabled:
        return pages
    try:
        result = await upscale_pages(
            pages,
            enhancer,
            params=params,
            is_default_back=is_default_back,
            progress_cb=upscale_progress_cb,
            cancel_cb=cancel_cb,
            log_cb=log_cb,
        )
    except EnhancementUnavailable as e:
        if log_cb:
            log_cb(f"{e}（元の画像で出力します）")
        return pages
    return result.pages

async def render_pages(
    pages: List[LayoutPage],
    options: ExportOptions,
    *,
    http: Optional[httpx.AsyncClient] = None,
    enhancer: Optional[Enhancer] = None,
    enhance_config: Optional[EnhanceConfig] = None,
    params: Optional[UpscaleParams] = None,
    is_default_back: ImagePredicate = is_marked_default_back,
    upscale_progress_cb: Optional[ProgressCallback] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    cancel_cb: Optional[CancelCallback] = None,
    log_cb: Optional[LogCallback] = None,
) -> List[CanvasPage]:
    validate_options(options)

    def _log(msg: str):
        if log_cb:
            log_cb(msg)

    async with _http_session(http) as client:
        if enhancer is None:
            enhancer = EnhancementClient(client, enhance_config)
        pages = await enhance_if_enabled(
            pages,
            options,
            enhancer,
            params=params,
            is_default_back=is_default_back,
            upscale_progress_cb=upscale_progress_cb,
            cancel_cb=cancel_cb,
            log_cb=log_cb,
        )

        loader = ImageLoader(client)
        rendered: List[CanvasPage] = []
        total = len(pages)
        for i, layout in enumerate(pages, start=1):
            if cancel_cb and cancel_cb():
                raise ExportCancelled("中断しました。")
            rendered.append(await render_layout_page(layout, options, loader, log_cb=log_cb))
            if progress_cb:
                progress_cb(i, total)
            if i == 1 or i == total or i % 10 == 0:
                _log(f"{i}/{total} ページを描画しました")
    return rendered

async def render_png_pages(pages: List[LayoutPage], options: ExportOptions, **kwargs) -> List[bytes]:
    rendered = await render_pages(pages, options, **kwargs)
    return [encode_png(p.image, options.dpi) for p in rendered]

async def render_data_uris(pages: List[LayoutPage], options: ExportOptions, **kwargs) -> List[str]:
    return [png_data_uri(png) for png in await render_png_pages(pages, options, **kwargs)]

def generate_pdf(pages: List[LayoutPage], options: ExportOptions, output_pdf: str, **kwargs) -> None:
    rendered = asyncio.run(render_pages(pages, options, **kwargs))
    write_pdf([p.image for p in rendered], options, output_pdf)

def generate_pngs(pages: List[LayoutPage], options: ExportOptions, out_dir: str, **kwargs) -> List[str]:
    rendered = asyncio.run(render_pages(pages, options, **kwargs))
    return write_pngs([p.image for p in rendered], [p.role for p in pages], options, out_dir)

def generate_print_html(pages: List[LayoutPage], options: ExportOptions, output_html: str, **kwargs) -> None:
    uris = asyncio.run(render_data_uris(pages, options, **kwargs))
    doc = build_print_html(uris, options, title=os.path.basename(output_html))
    try:
        with open(output_html, "w", encoding="utf-8") as f:
            f.write(doc)
    except OSError as e:
        raise EncodingError(f"HTMLを書き込めません: {output_html}: {e}") from e

ENHANCE_TEXT_KEYS = ("base_url", "api_prefix", "upscaler_1", "upscaler_2")
ENHANCE_INT_KEYS = ("factor", "max_edge")

def _enhance_from_dict(raw: dict) -> tuple[EnhanceConfig, UpscaleParams]:
    config_keys = EnhanceConfig.__dataclass_fields__
    param_keys = UpscaleParams.__dataclass_fields__
    unknown = sorted(set(raw) - set(config_keys) - set(param_keys))
    if unknown:
        raise ConfigError(f"未知の高画質化設定: {', '.join(unknown)}")
    for key, value in raw.items():
        if key in ENHANCE_TEXT_KEYS:
            ok = isinstance(value, str) and bool(value)
        elif key in ENHANCE_INT_KEYS:
            ok = isinstance(value, int) and not isinstance(value, bool) and value > 0
        else:
            ok = _is_number(value) and value >= 0
        if not ok:
            raise ConfigError(f"高画質化設定 {key} の値が不正です: {value!r}")
    config = EnhanceConfig(**{k: v for k, v in raw.items() if k in config_keys})
    params = UpscaleParams(**{k: v for k, v in raw.items() if k in param_keys})
    return config, params

def run_job_from_manifest(
    manifest_path: str,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    upscale_progress_cb: Optional[ProgressCallback] = None,
    log_cb: Optional[LogCallback] = None,
) -> str:
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError:
        raise UserFacingError(f"マニフェストを開けません: {manifest_path}")
    except ValueError as e:
        raise ConfigError(f"マニフェストのJSONが不正です: {e}")

    options = _options_from_dict(data.get("options", {}))
    config, params = _enhance_from_dict(data.get("enhance", {}))

    if "pages" in data:
        pages = validate_and_build_pages(data["pages"])
    else:
        pages = build_layout(validate_and_build_cards(data.get("cards", [])), data.get("default_back"))
    if not pages:
        raise ConfigError("カードがありません")

    fmt = data.get("format", "pdf")
    if fmt not in OUTPUT_FORMATS:
        raise ConfigError(f"未知の出力形式: {fmt}")
    output = data.get("output")
    if not output:
        raise ConfigError("output を指定してください")

    kwargs = dict(
        enhance_config=config,
        params=params,
        progress_cb=progress_cb,
        upscale_progress_cb=upscale_progress_cb,
        log_cb=log_cb,
    )
    if fmt == "pdf":
        generate_pdf(pages, options, output, **kwargs)
    elif fmt == "png":
        generate_pngs(pages, options, output, **kwargs)
    else:
        generate_print_html(pages, options, output, **kwargs)
    return output
