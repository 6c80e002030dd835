import uuid

from fastapi import Cookie, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.config import settings
from app.core.security import owner_id_from_token
from app.services.change_feed import ChangeFeed
from app.services.rule_engine import RuleEngine

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_prefix}/auth/login", auto_error=False)


async def get_current_owner_id(
    token: str | None = Depends(oauth2_scheme),
    access_token_cookie: str | None = Cookie(default=None, alias="access_token"),
) -> uuid.UUID:
    candidate = token or access_token_cookie
    owner_id = owner_id_from_token(candidate) if candidate else None
    if owner_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return owner_id


def get_rule_engine(request: Request) -> RuleEngine:
    engine = getattr(request.app.state, "rule_engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Rule engine unavailable")
    return engine


def get_change_feed(engine: RuleEngine = Depends(get_rule_engine)) -> ChangeFeed:
    if not isinstance(engine.source, ChangeFeed):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event publishing unavailable")
    return engine.source
