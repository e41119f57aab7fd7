import base64
import io

import pytest
from PIL import Image

def _png(size=(60, 84), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()

@pytest.fixture
def make_png():
    return _png

@pytest.fixture
def make_data_uri():
    def _make(size=(60, 84), color=(200, 30, 30)) -> str:
        return "data:image/png;base64," + base64.b64encode(_png(size, color)).decode("ascii")
    return _make
