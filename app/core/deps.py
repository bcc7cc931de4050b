from typing import List, Optional

from fastapi import Depends, WebSocket
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from app.core.context import get_request
from app.core.enum import SocketEvent, UserStatus
from app.core.exceptions import ForbiddenException, UnauthorizedException
from app.core.security import SecurityService
from app.core.settings import Settings
from app.core.ws_manager import WSConnectionManager
from app.db.models.database import User
from app.db.session import Database, get_session

ACCESS_TOKEN_COOKIE = "access_token"


def get_settings(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings


def get_security_service(settings: Settings = Depends(get_settings)) -> SecurityService:
    return SecurityService(settings)


def get_ws_manager(conn: HTTPConnection) -> WSConnectionManager:
    return conn.app.state.ws_manager


def extract_token(conn: HTTPConnection) -> str | None:
    """Credential lookup order: ?token= / ?access_token=, Authorization header, cookie."""
    token = (
        conn.query_params.get("token")
        or conn.query_params.get("access_token")
        or conn.headers.get("authorization")
        or conn.cookies.get(ACCESS_TOKEN_COOKIE)
    )
    if token and token.lower().startswith("bearer "):
        token = token.split(" ", 1)[1].strip()
    return token or None


async def resolve_user(
    db: AsyncSession, security: SecurityService, token: str | None
) -> User:
    """Resolve a credential to an ACTIVE user or raise."""
    if not token:
        raise UnauthorizedException("Not authorized, no token provided. Please log in.")

    try:
        payload = await security.decode_access_token(token)
    except ValueError as e:
        raise UnauthorizedException(f"Not authorized, {str(e).lower()}.")

    user_id = payload.get("sub")
    if not user_id or not str(user_id).isdigit():
        raise UnauthorizedException("Not authorized, token is invalid or malformed.")

    user = await db.scalar(select(User).where(User.id == int(user_id)))
    if not user:
        raise UnauthorizedException("Not authorized, user associated with token not found.")
    if user.status != UserStatus.ACTIVE.value:
        raise ForbiddenException(
            f"Access forbidden. Your account is {user.status.lower()}."
        )
    return user


class AuthorizationService:
    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        security: SecurityService = Depends(get_security_service),
    ):
        self.db = db
        self.security = security

    # ==============================
    # 🧩 CORE AUTH CHECKS
    # ==============================

    async def get_current_user(self) -> User:
        """Current user from the access_token cookie or Authorization header."""
        request = get_request()
        return await resolve_user(self.db, self.security, extract_token(request))

    # ==============================
    # 🧩 ROLE-BASED ACCESS CONTROL
    # ==============================

    async def require_role(self, required_roles: Optional[List[str]] = None) -> User:
        """Require one of the given roles (e.g. ["ADMIN"])."""
        current_user = await self.get_current_user()

        if not required_roles:
            return current_user

        if current_user.role not in required_roles:
            raise ForbiddenException(
                f"Access denied. Your role ({current_user.role}) is not authorized to access this resource."
            )
        return current_user

    @staticmethod
    async def authenticate_websocket(
        websocket: WebSocket,
        database: Database,
        security: SecurityService,
    ) -> User | None:
        """
        Resolve the user of an accepted WebSocket.
        On any failure send one socketError frame, close with 1008 and return None.
        """
        token = extract_token(websocket)
        try:
            async with database.session() as db:
                return await resolve_user(db, security, token)
        except (UnauthorizedException, ForbiddenException) as e:
            logger.warning(f"[WS][Auth] Rejected connection: {e.detail}")
            await websocket.send_json(
                {
                    "event": SocketEvent.ERROR.value,
                    "data": {"message": f"Authentication error: {e.detail}", "status_code": e.status_code},
                }
            )
            await websocket.close(code=1008)
            return None
