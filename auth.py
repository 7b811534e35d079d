# auth.py
"""API-key guard for the data endpoints. Only enforced when API_KEY is set."""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from settings import Settings, get_settings

logger = logging.getLogger(__name__)


def require_api_key(
    x_api_key: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.api_key:
        return
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing API key")
    if not hmac.compare_digest(x_api_key.encode(), settings.api_key.encode()):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=403, detail="Invalid API key")
