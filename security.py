"""Password hashing, JWT tokens and the auth dependencies used by the routers."""
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from passlib.context import CryptContext

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from database import get_db, serialize_doc, utcnow
from errors import AuthenticationError, PermissionDenied

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

PRIVATE_USER_FIELDS = ("password_hash",)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None):
    to_encode = {"sub": str(user["_id"]), "role": user.get("role", "customer"), "email": user.get("email")}
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def public_profile(user: dict) -> dict:
    data = {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}
    data = serialize_doc(data)
    data["full_name"] = f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()
    return data


def _user_from_token(token: str, db) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise AuthenticationError("Invalid token. Please login again.")
        oid = ObjectId(user_id)
    except ExpiredSignatureError:
        raise AuthenticationError("Token expired. Please login again.")
    except (JWTError, InvalidId, TypeError):
        raise AuthenticationError("Invalid token. Please login again.")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise AuthenticationError("User no longer exists")
    if not user.get("is_active", True):
        raise AuthenticationError("Account has been deactivated")
    return user


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)) -> dict:
    if not token:
        raise AuthenticationError("Please login to access this resource")
    return _user_from_token(token, db)


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)) -> Optional[dict]:
    """Resolve the user when a valid token is present, otherwise treat the caller as a guest."""
    if not token:
        return None
    try:
        return _user_from_token(token, db)
    except AuthenticationError:
        return None


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise PermissionDenied("Admin access only")
    return user
