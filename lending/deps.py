from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlmodel import Session, select

from lending.db import get_session
from lending.errors import _auth_401
from lending.models import Admin
from lending.security import decode_token

# auto_error=False：没带 token 时由我们返回统一格式的 401
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/admin/login", auto_error=False)


def require_admin(
    token: str | None = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> Admin:
    if not token:
        raise _auth_401("NOT_AUTHENTICATED", "Not logged in or session expired")

    try:
        username = decode_token(token)
    except (JWTError, ValueError):
        raise _auth_401("INVALID_TOKEN", "Token invalid or expired")

    admin = session.exec(select(Admin).where(Admin.username == username)).first()
    if not admin:
        raise _auth_401("ADMIN_NOT_FOUND", "Admin does not exist or was removed")

    return admin
