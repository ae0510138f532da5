# auth.py

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from bam_booking.config import SECRET_KEY, ALGORITHM
from bam_booking.database import database
from bam_booking.models import users

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Staff approve or reject, and may cancel or edit anyone's reservation
STAFF_ROLES = frozenset({"teacher", "admin"})
# Only administrators manage resources
ADMIN_ROLES = frozenset({"admin"})


# Pydantic Models
class User(BaseModel):
    username: str
    full_name: Optional[str] = None
    role: str = "student"


class Token(BaseModel):
    access_token: str
    token_type: str


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> Optional[str]:
    """Return the username carried by a valid token, None otherwise."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")


async def get_user(username: str):
    query = users.select().where(users.c.username == username)
    return await database.fetch_one(query)


# Used for API calls made by JavaScript
async def get_current_active_user(token: str = Depends(oauth2_scheme)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    username = decode_access_token(token)
    if username is None:
        raise credentials_exception

    user = await get_user(username=username)
    if user is None:
        raise credentials_exception

    return User(username=user["username"], full_name=user["full_name"], role=user["role"])


# Authorization collaborators. The scheduler only sees these two predicates.
class RoleAuthorizer:
    """Role lookup from a fixed mapping of actor id -> role."""

    def __init__(self, roles: Optional[Dict[str, str]] = None):
        self.roles = dict(roles or {})

    async def role_of(self, actor_id: str) -> Optional[str]:
        return self.roles.get(actor_id)

    async def can_decide(self, actor_id: str, resource_id: str) -> bool:
        return await self.role_of(actor_id) in STAFF_ROLES

    async def can_administer(self, actor_id: str, resource_id: str) -> bool:
        return await self.role_of(actor_id) in STAFF_ROLES


class DatabaseRoleAuthorizer(RoleAuthorizer):
    """Role lookup against the users table."""

    async def role_of(self, actor_id: str) -> Optional[str]:
        user = await get_user(actor_id)
        return user["role"] if user else None
