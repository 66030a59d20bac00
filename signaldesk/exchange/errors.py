from __future__ import annotations

from typing import Any, Optional

NO_POSITION_CODE = "22002"
_NO_POSITION_MARKERS = ("no position to close", "position not found")


class ExchangeError(RuntimeError):
    """Exchange rejected a request (HTTP error or non-success code in the body)."""

    def __init__(
        self,
        msg: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(f"code={code} msg={msg}" if code else msg)
        self.code = code
        self.msg = msg
        self.status = status
        self.data = data


def is_no_position_error(err: BaseException) -> bool:
    """True for the "nothing to close" family of exchange failures."""
    code = getattr(err, "code", None)
    if code is not None and str(code) == NO_POSITION_CODE:
        return True
    text = str(err).lower()
    if NO_POSITION_CODE in text:
        return True
    return any(m in text for m in _NO_POSITION_MARKERS)
