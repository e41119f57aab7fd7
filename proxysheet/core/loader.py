from __future__ import annotations
import base64
import io
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote_to_bytes, urlparse

import httpx
from PIL import Image, ImageOps

from .errors import ImageLoadError, is_data_uri, is_http_url

logger = logging.getLogger(__name__)

IMAGE_ACCEPT = "image/*"

def decode_image_bytes(data: bytes) -> Image.Image:
    """バイト列をデコードしてメモリ上に完全に読み込む（元のバッファは保持しない）"""
    with Image.open(io.BytesIO(data)) as im:
        im.load()
        im = ImageOps.exif_transpose(im)
        return im.copy()

def decode_data_uri(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep:
        raise ValueError("malformed data URI")
    if header.lower().endswith(";base64"):
        return base64.b64decode(payload)
    return unquote_to_bytes(payload)

async def fetch_image_bytes(client: httpx.AsyncClient, url: str) -> bytes:
    res = await client.get(url, headers={"Accept": IMAGE_ACCEPT})
    res.raise_for_status()
    return res.content

class ImageLoader:
    """URLからPILの画像を得る。

    一次経路は Accept: image/* を付けた取得とメモリ上のデコード。失敗したら
    ヘッダ無しの直接読み込み（data: URI、ローカルファイル、素のGET）に切り替える。
    両方失敗したときだけ ImageLoadError を送出する。
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def load(self, url: str) -> Image.Image:
        if not url:
            raise ImageLoadError("empty image url")
        try:
            return await self._load_primary(url)
        except Exception as e:
            logger.debug("primary image load failed for %s: %s", _short(url), e)
        try:
            return await self._load_direct(url)
        except Exception as e:
            raise ImageLoadError(f"image load failed: {_short(url)}: {e}") from e

    async def _load_primary(self, url: str) -> Image.Image:
        if not is_http_url(url):
            raise ImageLoadError("not an http(s) url")
        data = await fetch_image_bytes(self.client, url)
        return decode_image_bytes(data)

    async def _load_direct(self, url: str) -> Image.Image:
        if is_http_url(url):
            res = await self.client.get(url)
            res.raise_for_status()
            return decode_image_bytes(res.content)
        return decode_image_bytes(await read_source_bytes(self.client, url))

async def read_source_bytes(client: httpx.AsyncClient, url: str) -> bytes:
    if is_http_url(url):
        return await fetch_image_bytes(client, url)
    if is_data_uri(url):
        return decode_data_uri(url)
    path = _local_path(url)
    if path is None:
        raise ValueError(f"unsupported image url: {_short(url)}")
    return path.read_bytes()

def _local_path(url: str) -> Optional[Path]:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote_to_bytes(parsed.path).decode("utf-8"))
    if parsed.scheme == "" or (len(parsed.scheme) == 1 and url[1:3] in (":\\", ":/")):
        return Path(url)
    return None

def _short(url: str) -> str:
    return url if len(url) <= 80 else url[:77] + "..."
