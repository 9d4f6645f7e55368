"""
Request dependencies shared by the HTTP routers.

Identity comes from a bearer JWT; the token is looked up in the
Authorization header, then the ``authToken`` cookie, then the ``token``
query parameter. The engine trusts the resulting user id as-is.
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from watchparty.exceptions import AuthenticationException, MissingTokenException
from watchparty.services.room_repository import RoomRepository
from watchparty.services.room_service import RoomService
from watchparty.services.store import get_room_store
from watchparty.utils.logging_config import auth_logger
from watchparty.utils.security import user_id_from_token

AUTH_COOKIE_NAME = "authToken"

security = HTTPBearer(auto_error=False)


def extract_token(
    credentials: Optional[HTTPAuthorizationCredentials],
    cookies: dict,
    query_params,
) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    if cookies.get(AUTH_COOKIE_NAME):
        return cookies[AUTH_COOKIE_NAME]
    return query_params.get("token")


async def get_current_user_id(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """
    Resolve the caller's user id.

    Raises:
        MissingTokenException: no token anywhere in the request
        AuthenticationException: token is invalid or expired
    """
    token = extract_token(credentials, request.cookies, request.query_params)
    if not token:
        raise MissingTokenException()
    user_id = user_id_from_token(token)
    if not user_id:
        auth_logger.warning("Failed authorization attempt via token")
        raise AuthenticationException()
    return user_id


def get_room_service() -> RoomService:
    return RoomService(RoomRepository(get_room_store()))


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
RoomServiceDep = Annotated[RoomService, Depends(get_room_service)]
