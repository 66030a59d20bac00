import base64
import hashlib
import hmac
from urllib.parse import urlencode


def build_query(params: dict) -> str:
    return urlencode({k: v for k, v in params.items() if v is not None}, doseq=True)


def prehash(timestamp_ms: str, method: str, request_path: str, query: str = "", body: str = "") -> str:
    q = f"?{query}" if query else ""
    return f"{timestamp_ms}{method.upper()}{request_path}{q}{body}"


def sign(secret: str, payload: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")
