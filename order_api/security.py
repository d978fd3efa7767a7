from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from order_api.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES


def create_access_token(subject: str, expires_minutes: int | None = None, secret: str | None = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else ACCESS_TOKEN_EXPIRE_MINUTES
    now = datetime.now(timezone.utc)

    payload = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, secret or SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str, secret: str | None = None) -> dict:
    try:
        return jwt.decode(token, secret or SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise ValueError("Invalid token") from e
