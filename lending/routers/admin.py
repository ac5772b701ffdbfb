from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from lending.db import get_session
from lending.deps import require_admin
from lending.errors import _auth_401
from lending.models import Admin
from lending.schemas import AdminCreate, AdminRead, Token
from lending.security import create_access_token, hash_password, verify_password

router = APIRouter(prefix="/admin", tags=["admin"])


def _username_taken() -> HTTPException:
    return HTTPException(status_code=409, detail={"code": "USERNAME_EXISTS", "message": "Username already taken"})


@router.post("/register", status_code=201, response_model=AdminRead)
def register(data: AdminCreate, session: Session = Depends(get_session)):
    existing = session.exec(select(Admin).where(Admin.username == data.username)).first()
    if existing:
        raise _username_taken()

    admin = Admin(
        username=data.username,
        password_hash=hash_password(data.password),
        full_name=data.full_name,
    )
    session.add(admin)

    # 并发下 unique 冲突兜底
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise _username_taken()

    session.refresh(admin)
    return admin


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
):
    admin = session.exec(select(Admin).where(Admin.username == form_data.username)).first()
    if (not admin) or (not verify_password(form_data.password, admin.password_hash)):
        raise _auth_401("INVALID_CREDENTIALS", "Wrong username or password")

    return {"access_token": create_access_token(admin.username), "token_type": "bearer"}


@router.get("/profile", response_model=AdminRead)
def profile(admin: Admin = Depends(require_admin)):
    return admin
