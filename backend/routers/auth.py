"""
Authentication router.
Register, login, and user profile endpoints.
"""
import logging
import traceback
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel

from database import get_db, User
from core.auth import hash_password, verify_password, create_access_token, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


def _build_user_dict(user: User) -> dict:
    """Build user response dict."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "tiktok_username": user.tiktok_username,
        "has_tiktok_username": bool(user.tiktok_username),
    }


@router.post("/register")
async def register(data: RegisterRequest, db: Session = Depends(get_db)):
    """Create a new user account."""
    try:
        if len(data.password) < 6:
            raise HTTPException(status_code=400, detail="Password must be at least 6 characters")

        email = data.email.lower().strip()
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            raise HTTPException(status_code=400, detail="Email already registered")

        user = User(
            email=email,
            name=data.name or email.split("@")[0],
            password_hash=hash_password(data.password),
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        token = create_access_token(user.id)
        return JSONResponse(content={"token": token, "user": _build_user_dict(user)})
    except HTTPException:
        raise
    except Exception:
        db.rollback()
        logger.error(f"Registration error: {traceback.format_exc()}")
        return JSONResponse(status_code=500, content={
            "detail": "An error occurred during registration",
        })


@router.post("/login")
async def login(data: LoginRequest, db: Session = Depends(get_db)):
    """Login with email and password."""
    try:
        user = db.query(User).filter(
            User.email == data.email.lower().strip(), User.is_active == True
        ).first()

        if not user or not verify_password(data.password, user.password_hash):
            raise HTTPException(status_code=401, detail="Invalid email or password")

        token = create_access_token(user.id)
        return JSONResponse(content={"token": token, "user": _build_user_dict(user)})
    except HTTPException:
        raise
    except Exception:
        logger.error(f"Login error: {traceback.format_exc()}")
        return JSONResponse(status_code=500, content={
            "detail": "An error occurred during login",
        })


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    """Get current user."""
    return _build_user_dict(user)
