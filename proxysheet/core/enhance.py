from __future__ import annotations
import base64
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import httpx

from .errors import EnhancementError
from .loader import decode_image_bytes, read_source_bytes

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:7860"
DEFAULT_API_PREFIX = "/enhance-api"

@dataclass(frozen=True)
class EnhanceConfig:
    base_url: str = DEFAULT_BASE_URL
    api_prefix: str = DEFAULT_API_PREFIX
    timeout: float = 120.0
    upscaler_1: str = "R-ESRGAN 4x+ Anime6B"
    upscaler_2: str = "ESRGAN_4x"

    def endpoint(self, name: str) -> str:
        return f"{self.base_url.rstrip('/')}/{self.api_prefix.strip('/')}/{name}"

@dataclass(frozen=True)
class UpscaleParams:
    # 低めにしてカードの文字を崩さない
    denoise_strength: float = 0.12
    factor: int = 2
    max_edge: int = 4096
    upscaler_2_visibility: float = 0.4

def target_dimensions(src_w: int, src_h: int, params: UpscaleParams) -> Tuple[int, int]:
    w = max(1, min(src_w * params.factor, params.max_edge))
    h = max(1, min(src_h * params.factor, params.max_edge))
    return (w, h)

def build_job_payload(image_b64: str, size: Tuple[int, int], params: UpscaleParams, config: EnhanceConfig) -> dict:
    target_w, target_h = size
    return {
        "image": image_b64,
        # 倍率と明示サイズの両方を渡す（サービスの版によって参照先が違う）
        "upscaling_resize": params.factor,
        "upscaling_resize_w": target_w,
        "upscaling_resize_h": target_h,
        "upscaler_1": config.upscaler_1,
        "upscaler_2": config.upscaler_2,
        "extras_upscaler_2_visibility": params.upscaler_2_visibility,
        "gfpgan_visibility": 0,
        "codeformer_visibility": 0,
        "codeformer_weight": 0,
        "denoising_strength": params.denoise_strength,
        "upscale_first": True,
        "show_extras_results": False,
        "resize_mode": 0,
    }

def result_to_data_uri(payload) -> str:
    out = payload.get("image") if isinstance(payload, dict) else None
    if not out or not isinstance(out, str):
        raise EnhancementError("no image returned from enhancement service")
    if "," in out:
        out = out.split(",", 1)[1]
    # 画像として読めない応答は失敗扱い（呼び出し側は元画像に戻す）
    try:
        decode_image_bytes(base64.b64decode(out, validate=True))
    except Exception as e:
        raise EnhancementError(f"enhancement service returned an undecodable image: {e}") from e
    return f"data:image/png;base64,{out}"

class EnhancementClient:
    """ローカルの高画質化サービスへの薄いクライアント（状態なし、再試行なし）"""

    def __init__(self, client: httpx.AsyncClient, config: Optional[EnhanceConfig] = None):
        self.client = client
        self.config = config or EnhanceConfig()

    async def probe_availability(self, cancel_cb: Optional[Callable[[], bool]] = None) -> bool:
        if cancel_cb and cancel_cb():
            return False
        url = self.config.endpoint("upscalers")
        try:
            res = await self.client.get(url, headers={"Accept": "application/json"}, timeout=10.0)
            if not res.is_success:
                logger.info("enhancement service probe: HTTP %s", res.status_code)
                return False
            res.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.info("enhancement service probe failed: %s", e)
            return False
        return True

    async def enhance(self, url: str, params: Optional[UpscaleParams] = None) -> str:
        """画像を取得して高画質化し、data:image/png;base64 のURIを返す"""
        params = params or UpscaleParams()
        try:
            raw = await read_source_bytes(self.client, url)
            src = decode_image_bytes(raw)
        except Exception as e:
            raise EnhancementError(f"source image fetch failed: {e}") from e

        size = target_dimensions(src.width, src.height, params)
        payload = build_job_payload(base64.b64encode(raw).decode("ascii"), size, params, self.config)
        try:
            res = await self.client.post(
                self.config.endpoint("extra-single-image"),
                json=payload,
                headers={"Accept": "application/json"},
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise EnhancementError(f"enhancement request failed: {e}") from e
        if not res.is_success:
            raise EnhancementError(f"enhancement service HTTP {res.status_code}")
        try:
            body = res.json()
        except ValueError as e:
            raise EnhancementError("enhancement service returned invalid JSON") from e

        logger.debug("enhanced %s from %sx%s to %sx%s", url, src.width, src.height, *size)
        return result_to_data_uri(body)
