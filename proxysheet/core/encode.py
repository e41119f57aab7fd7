from __future__ import annotations
import base64
import html
import io
import os
import shutil
from typing import List, Sequence, Tuple

import fitz  # PyMuPDF
from PIL import Image

from .errors import EncodingError
from .types import ExportOptions
from .units import paper_size_inches

POINTS_PER_INCH = 72

def page_size_inches(options: ExportOptions) -> Tuple[float, float]:
    return paper_size_inches(options.paper, options.orientation)

def encode_png(raster: Image.Image, dpi: int) -> bytes:
    buf = io.BytesIO()
    try:
        raster.save(buf, format="PNG", dpi=(dpi, dpi))
    except Exception as e:
        raise EncodingError(f"PNGに変換できません: {e}") from e
    return buf.getvalue()

def png_data_uri(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")

def png_file_name(index: int, role: str) -> str:
    return f"page-{index}-{role}.png"

def write_pdf(rasters: Sequence[Image.Image], options: ExportOptions, output_pdf: str) -> None:
    """各ラスタを1ページ全面に貼ったPDFを書き出す。一時ファイルに保存してから置き換える"""
    w_in, h_in = page_size_inches(options)
    page_w = w_in * POINTS_PER_INCH
    page_h = h_in * POINTS_PER_INCH

    out_dir = os.path.dirname(os.path.abspath(output_pdf)) or os.getcwd()
    os.makedirs(out_dir, exist_ok=True)
    tmp_path = os.path.join(out_dir, f".tmp_{os.path.basename(output_pdf)}")

    doc_out = fitz.open()
    try:
        for raster in rasters:
            page_out = doc_out.new_page(width=page_w, height=page_h)
            page_out.insert_image(fitz.Rect(0, 0, page_w, page_h), stream=encode_png(raster, options.dpi))
        doc_out.save(tmp_path)
    except EncodingError:
        raise
    except Exception as e:
        raise EncodingError(f"PDFの生成中にエラーが発生しました: {e}") from e
    finally:
        doc_out.close()
    shutil.move(tmp_path, output_pdf)

def write_pngs(rasters: Sequence[Image.Image], roles: Sequence[str], options: ExportOptions, out_dir: str) -> List[str]:
    os.makedirs(out_dir, exist_ok=True)
    paths: List[str] = []
    for i, (raster, role) in enumerate(zip(rasters, roles), start=1):
        path = os.path.join(out_dir, png_file_name(i, role))
        try:
            with open(path, "wb") as f:
                f.write(encode_png(raster, options.dpi))
        except OSError as e:
            raise EncodingError(f"PNGを書き込めません: {path}: {e}") from e
        paths.append(path)
    return paths

def build_print_html(data_uris: Sequence[str], options: ExportOptions, title: str = "Print") -> str:
    """ブラウザ印刷用のHTML。1ページ = 用紙全面の画像1枚"""
    w_in, h_in = page_size_inches(options)
    pages = "\n".join(
        f'    <div class="page"><img src="{src}" alt="page" /></div>' for src in data_uris
    )
    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <title>{html.escape(title)}</title>
    <style>
      @page {{ size: {w_in}in {h_in}in; margin: 0; }}
      html, body {{ margin: 0; padding: 0; background: #fff; -webkit-print-color-adjust: exact; print-color-adjust: exact; }}
      .page {{ width: {w_in}in; height: {h_in}in; page-break-after: always; break-after: page; display: flex; align-items: center; justify-content: center; }}
      .page:last-child {{ page-break-after: auto; break-after: auto; }}
      .page img {{ width: {w_in}in; height: {h_in}in; object-fit: contain; display: block; }}
    </style>
  </head>
  <body>
{pages}
  </body>
</html>
"""
