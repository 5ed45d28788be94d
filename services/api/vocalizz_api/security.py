from __future__ import annotations

import datetime as dt
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from vocalizz_shared.config import get_settings
from vocalizz_shared.models import Session as UserSession


pwd_context = CryptContext(schemes=['bcrypt'], deprecated='auto')
JWT_ALGORITHM = 'HS256'


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(*, user_id: str, db: Session) -> str:
    settings = get_settings()
    now = dt.datetime.now(dt.timezone.utc)
    exp = now + dt.timedelta(minutes=settings.jwt_exp_minutes)
    jti = uuid.uuid4().hex
    payload = {'sub': user_id, 'jti': jti, 'iat': int(now.timestamp()), 'exp': int(exp.timestamp())}
    token = jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)
    db.add(UserSession(user_id=user_id, token_jti=jti))
    return token


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError('invalid_token') from exc
