from fastapi import Header, HTTPException

from remindpro.settings import settings


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_actor_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> int | None:
    if not x_user_id:
        return None
    try:
        return int(x_user_id.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be an integer")
