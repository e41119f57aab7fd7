class UserFacingError(Exception):
    """UI/CLIでそのまま表示してよいエラー"""

class ConfigError(UserFacingError):
    pass

class InvalidPosition(ConfigError, ValueError):
    """スロット位置が 1..9 の整数でない（呼び出し側のバグ）"""

class EnhancementUnavailable(UserFacingError):
    pass

class EncodingError(UserFacingError):
    pass

class ExportCancelled(UserFacingError):
    pass

class ImageLoadError(Exception):
    """画像の取得・デコード失敗。呼び出し側でプレースホルダに置き換える"""

class EnhancementError(Exception):
    """1枚分の高画質化失敗。元のURLを使い続ける"""

def is_data_uri(url: str) -> bool:
    return url[:5].lower() == "data:"

def is_http_url(url: str) -> bool:
    p = url.lower()
    return p.startswith("http://") or p.startswith("https://")
