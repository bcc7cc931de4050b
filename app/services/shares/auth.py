from typing import Any

from fastapi import Depends, Response
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import ACCESS_TOKEN_COOKIE, get_security_service, get_settings
from app.core.enum import UserRole, UserStatus
from app.core.exceptions import ConflictException, ForbiddenException, UnauthorizedException
from app.core.security import SecurityService
from app.core.settings import Settings
from app.db.models.database import User
from app.db.session import get_session
from app.libs.formats.datetime import now as get_now
from app.schemas.auth.user import LoginUser, UserCreate
from app.services.shares.doubts import public_user


class AuthService:
    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        security: SecurityService = Depends(get_security_service),
        settings: Settings = Depends(get_settings),
    ):
        self.db = db
        self.security = security
        self.settings = settings

    async def login_async(self, schema: LoginUser, res: Response) -> dict[str, Any]:
        user = await self.db.scalar(select(User).where(User.email == schema.email))

        # 1️⃣ wrong email or password
        if not user or not await self.security.verify_password(schema.password, user.password or ""):
            raise UnauthorizedException("Invalid email or password.")

        # 2️⃣ inactive / suspended
        if user.status != UserStatus.ACTIVE.value:
            raise ForbiddenException(f"Your account is {user.status.lower()}.")

        # 3️⃣ token + cookie
        token = await self.security.create_access_token(str(user.id))
        res.set_cookie(
            key=ACCESS_TOKEN_COOKIE,
            value=token,
            httponly=True,
            secure=self.settings.COOKIE_SECURE,
            samesite="lax",
            max_age=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            path="/",
        )
        logger.info(f"[Auth] User {user.id} logged in")
        return {"message": "Login successful", "access_token": token, "user": public_user(user)}

    async def register_async(self, schema: UserCreate) -> dict[str, Any]:
        try:
            existing_id = await self.db.scalar(select(User.id).where(User.email == schema.email))
            if existing_id:
                raise ConflictException("Email already registered")

            new_user = User(
                name=schema.name.strip(),
                email=schema.email,
                password=await self.security.hash_password(schema.password),
                role=UserRole.STUDENT.value,
                status=UserStatus.ACTIVE.value,
                created_at=get_now(),
            )
            self.db.add(new_user)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"[Auth] Registered user {new_user.id}")
        return {"message": "Registered successfully", "user": public_user(new_user)}

    async def logout_async(self, res: Response):
        res.delete_cookie(
            key=ACCESS_TOKEN_COOKIE,
            httponly=True,
            secure=self.settings.COOKIE_SECURE,
            samesite="lax",
            path="/",
        )
        return {"message": "Logout done"}

    async def me_async(self, user: User) -> dict[str, Any]:
        return {**public_user(user), "email": user.email, "status": user.status}
