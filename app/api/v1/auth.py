from fastapi import APIRouter, Depends, Response, status

from app.core.deps import AuthorizationService
from app.db.models.database import User
from app.schemas.auth.user import LoginUser, UserCreate
from app.services.shares.auth import AuthService

router = APIRouter(prefix="/auth", tags=["Auth"])


async def current_user(
    authorization: AuthorizationService = Depends(AuthorizationService),
) -> User:
    return await authorization.get_current_user()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(schema: UserCreate, auth_service: AuthService = Depends(AuthService)):
    return await auth_service.register_async(schema)


@router.post("/login")
async def login(
    schema: LoginUser,
    response: Response,
    auth_service: AuthService = Depends(AuthService),
):
    """Sets the httponly access_token cookie and also returns the token for non-browser clients."""
    return await auth_service.login_async(schema, response)


@router.get("/logout")
async def logout(response: Response, auth_service: AuthService = Depends(AuthService)):
    return await auth_service.logout_async(response)


@router.get("/me")
async def me(
    user: User = Depends(current_user),
    auth_service: AuthService = Depends(AuthService),
):
    return await auth_service.me_async(user)
