from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from tempchat.database import get_db
from tempchat.exceptions import AlreadyExistsError
from tempchat.logging_config import get_logger
from tempchat.repositories.user_repository import UserRepository
from tempchat.schemas.user import UserCreate, UserProfile, Token, UserLogin, RegisterResponse
from tempchat.auth import (
    TOKEN_COOKIE,
    authenticate_user,
    create_access_token,
    get_current_active_user,
    get_password_hash,
)
from tempchat.config import settings

logger = get_logger(__name__)

router = APIRouter()

def _issue_token(response: Response, username: str, user_id: int) -> dict:
    expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(data={"sub": username, "userId": user_id}, expires_delta=expires)
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        samesite="none" if settings.COOKIE_SECURE else "lax",
        secure=settings.COOKIE_SECURE,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return {"access_token": token, "token_type": "bearer", "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60}

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register_user(user_data: UserCreate, response: Response, db: AsyncSession = Depends(get_db)):
    user_repo = UserRepository(db)

    if await user_repo.get_by_username(user_data.username):
        raise HTTPException(status_code=400, detail="User already exists")

    try:
        user = await user_repo.create(user_data.username, await get_password_hash(user_data.password))
    except AlreadyExistsError:
        raise HTTPException(status_code=400, detail="User already exists")

    logger.info("Registered user %s (id=%s)", user.username, user.id)
    return {"id": user.id, **_issue_token(response, user.username, user.id)}

@router.post("/login", response_model=Token)
async def login_user(response: Response, form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)):
    user = await authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return _issue_token(response, user.username, user.id)

@router.post("/login-json", response_model=Token)
async def login_user_json(user_data: UserLogin, response: Response, db: AsyncSession = Depends(get_db)):
    user = await authenticate_user(db, user_data.username, user_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return _issue_token(response, user.username, user.id)

@router.get("/me", response_model=UserProfile)
async def get_current_user_info(current_user = Depends(get_current_active_user)):
    return current_user

@router.post("/refresh", response_model=Token)
async def refresh_token(response: Response, current_user = Depends(get_current_active_user)):
    return _issue_token(response, current_user.username, current_user.id)
