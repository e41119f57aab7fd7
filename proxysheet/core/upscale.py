from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Protocol

from .enhance import UpscaleParams
from .errors import EnhancementError, EnhancementUnavailable, ExportCancelled
from .plan import page_images
from .types import LayoutImage, LayoutPage, UpscaleProgress

ImagePredicate = Callable[[LayoutImage], bool]
ProgressCallback = Callable[[UpscaleProgress], None]

CACHE_KEY_PREFIX = "sd:upscaled:"

class Enhancer(Protocol):
    async def probe_availability(self, cancel_cb: Optional[Callable[[], bool]] = None) -> bool: ...

    async def enhance(self, url: str, params: Optional[UpscaleParams] = None) -> str: ...

class Cache(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

@dataclass
class UpscaleResult:
    pages: List[LayoutPage]
    # 元URL -> 高画質化後のdata URI（成功したものだけ）
    rewritten: Dict[str, str] = field(default_factory=dict)
    # 元URL -> エラーメッセージ
    failed: Dict[str, str] = field(default_factory=dict)

def is_marked_default_back(img: LayoutImage) -> bool:
    return img.is_default_back

def is_eligible(page: LayoutPage, img: LayoutImage, is_default_back: ImagePredicate) -> bool:
    if not img.url:
        return False
    # 既定の裏面画像を除外するのは裏面ページだけ
    if page.role == "back" and is_default_back(img):
        return False
    return True

def eligible_urls(pages: List[LayoutPage], is_default_back: ImagePredicate = is_marked_default_back) -> List[str]:
    seen: Dict[str, None] = {}
    for page in pages:
        for img in page_images(page):
            if is_eligible(page, img, is_default_back):
                seen.setdefault(img.url, None)
    return list(seen)

class ProgressChannel:
    """進捗を呼び出し元のコールバックへ順に流す。done=True は一度だけ"""

    def __init__(self, total: int, progress_cb: Optional[ProgressCallback] = None):
        self.total = total
        self.progress_cb = progress_cb
        self.finished = False

    def emit(self, current: int) -> None:
        if self.finished:
            return
        done = current >= self.total
        self._send(UpscaleProgress(current=current, total=self.total, done=done))
        self.finished = done

    def finish(self, current: Optional[int] = None) -> None:
        if self.finished:
            return
        self.finished = True
        cur = self.total if current is None else current
        self._send(UpscaleProgress(current=cur, total=self.total, done=True))

    def _send(self, p: UpscaleProgress) -> None:
        if self.progress_cb:
            self.progress_cb(p)

async def upscale_pages(
    pages: List[LayoutPage],
    enhancer: Enhancer,
    *,
    params: Optional[UpscaleParams] = None,
    is_default_back: ImagePredicate = is_marked_default_back,
    progress_cb: Optional[ProgressCallback] = None,
    cancel_cb: Optional[Callable[[], bool]] = None,
    log_cb: Optional[Callable[[str], None]] = None,
) -> UpscaleResult:
    """ページ群の画像を高画質化した新しいページ群を返す（入力は変更しない）。

    同じURLはこの実行内で一度だけサービスに送り、結果を全ての出現箇所で使い回す。
    呼び出しは1件ずつ順番に行う。1件の失敗は元のURLを残して続行する。
    サービスが応答しなければ EnhancementUnavailable を送出する。
    """
    def _log(msg: str):
        if log_cb:
            log_cb(msg)

    def _check_cancel():
        if cancel_cb and cancel_cb():
            raise ExportCancelled("中断しました。")

    _check_cancel()
    if not await enhancer.probe_availability(cancel_cb=cancel_cb):
        _check_cancel()
        raise EnhancementUnavailable(
            "高画質化サービスに接続できません。サービスを起動するか、高画質化をOFFにしてください。"
        )

    total = len(eligible_urls(pages, is_default_back))
    progress = ProgressChannel(total, progress_cb)
    progress.emit(0)

    # この実行専用の重複排除マップ。失敗は None として記録し、再送しない
    results: Dict[str, Optional[str]] = {}
    failed: Dict[str, str] = {}
    out_pages: List[LayoutPage] = []
    try:
        for page in pages:
            drawn = page_images(page)
            images: List[LayoutImage] = []
            # 描画されない10枚目以降はサービスに送らない
            for i, img in enumerate(page.images):
                if i >= len(drawn) or not is_eligible(page, img, is_default_back):
                    images.append(replace(img))
                    continue
                if img.url not in results:
                    _check_cancel()
                    try:
                        results[img.url] = await enhancer.enhance(img.url, params)
                    except EnhancementError as e:
                        results[img.url] = None
                        failed[img.url] = str(e)
                        _log(f"高画質化に失敗しました（元画像を使用）: {img.name or img.url[:80]}: {e}")
                    progress.emit(len(results))
                enhanced = results[img.url]
                images.append(replace(img, url=enhanced) if enhanced else replace(img))
            out_pages.append(replace(page, images=images))
    finally:
        progress.finish(len(results))

    _log(f"高画質化: {total - len(failed)}/{total} 枚")
    rewritten = {url: new for url, new in results.items() if new}
    return UpscaleResult(pages=out_pages, rewritten=rewritten, failed=failed)

async def upscale_image_with_cache(
    url: str,
    enabled: bool,
    enhancer: Enhancer,
    cache: Cache,
    params: Optional[UpscaleParams] = None,
) -> str:
    """1枚だけ高画質化する。無効・サービス不在・失敗のときは元のURLを返す"""
    if not enabled:
        return url
    key = CACHE_KEY_PREFIX + url
    cached = await cache.get(key)
    if cached:
        return cached
    if not await enhancer.probe_availability():
        return url
    try:
        data_uri = await enhancer.enhance(url, params)
    except EnhancementError:
        return url
    await cache.set(key, data_uri)
    return data_uri
