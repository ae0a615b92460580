import hmac
import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from peppol_converter.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


async def verify_api_key(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    x_api_key: Annotated[str, Header()] = "",
) -> None:
    if hmac.compare_digest(x_api_key.encode(), settings.api_key.encode()):
        return
    logger.warning(
        "rejected request with invalid api key",
        extra={"path": request.url.path, "key_present": bool(x_api_key)},
    )
    raise HTTPException(status_code=401, detail="Invalid or missing API key")
