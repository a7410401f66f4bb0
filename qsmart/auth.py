from datetime import datetime, timedelta
from typing import Optional

import pytz
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from qsmart import models
from qsmart.config import settings
from qsmart.database import get_db

# --- PASSWORD HASHING ---
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")

MANAGER_ROLES = (models.Role.teacher, models.Role.admin)


# --- PASSWORD FUNCTIONS ---
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# --- AUTHENTICATE ---
def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    user = db.query(models.User).filter(models.User.email == email.strip().lower()).first()
    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        return None
    return user


# --- TOKEN HANDLING ---
def create_access_token(user: models.User, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(pytz.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(user.id), "role": user.role.value, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the claims of a valid token; raises JWTError otherwise."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    if payload.get("sub") is None:
        raise JWTError("Token has no subject")
    return payload


# --- GET CURRENT USER FROM TOKEN ---
def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> models.User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        user_id = int(payload["sub"])
    except (JWTError, ValueError):
        raise credentials_exception

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


# --- ROLE CHECK ---
def require_roles(*roles: models.Role):
    def checker(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: insufficient role")
        return user

    return checker


get_manager_user = require_roles(*MANAGER_ROLES)
get_parent_user = require_roles(models.Role.parent)


def can_manage_queue(queue: models.Queue, user: models.User) -> bool:
    if user.role == models.Role.admin:
        return True
    return user.role == models.Role.teacher and queue.admin_id == user.id
