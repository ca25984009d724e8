from typing import Optional
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr

from app.api.deps import get_current_user
from app.db import get_db
from app.models import User

router = APIRouter()


class UserCreate(BaseModel):
    name: str
    email: EmailStr
    phone_number: Optional[str] = None  # E.164
    timezone: Optional[str] = None  # IANA, e.g. "America/New_York"


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    phone_number: Optional[str]
    phone_verified: bool
    timezone: Optional[str]
    notification_preferences: dict
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        phone_number=user.phone_number,
        phone_verified=bool(user.phone_verified),
        timezone=user.timezone,
        notification_preferences=user.notification_preferences or {},
        created_at=user.created_at
    )


@router.post("", response_model=UserResponse, status_code=201)
def create_user(user_data: UserCreate, db: Session = Depends(get_db)):
    """Create a new user."""
    # Check if email already exists
    existing = db.query(User).filter(User.email == user_data.email).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        name=user_data.name,
        email=user_data.email,
        phone_number=user_data.phone_number,
    )
    if user_data.timezone:
        user.timezone = user_data.timezone
    db.add(user)
    db.commit()
    db.refresh(user)

    return _user_to_response(user)


@router.get("/me", response_model=UserResponse)
def get_me(user: User = Depends(get_current_user)):
    """The user identified by the X-User-Id header."""
    return _user_to_response(user)
