from fastapi import APIRouter, Depends, Form, HTTPException, status
from sqlmodel import Session, select

from prepadi.db import get_session
from prepadi.models import Organization, User
from prepadi.auth import create_access_token, create_refresh_token, get_password_hash, refresh_access_token, verify_password


router = APIRouter(prefix="/auth", tags=["auth"])

SELF_SERVICE_ROLES = ("student", "organization")


def _token_response(user: User) -> dict:
    return {
        "access_token": create_access_token(user.id),
        "refresh_token": create_refresh_token(user.id),
        "token_type": "bearer",
        "user": {"id": user.id, "email": user.email, "role": user.role, "organization_id": user.organization_id},
    }


@router.post("/register")
def register(
    email: str = Form(...),
    password: str = Form(...),
    full_name: str = Form(...),
    role: str = Form("student"),
    organization_name: str | None = Form(None),
    session: Session = Depends(get_session),
):
    if role not in SELF_SERVICE_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role")
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    organization_id = None
    if role == "organization":
        org = Organization(name=organization_name or full_name)
        session.add(org)
        session.flush()
        organization_id = org.id

    user = User(
        email=email,
        full_name=full_name,
        role=role,
        hashed_password=get_password_hash(password),
        organization_id=organization_id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return _token_response(user)


@router.post("/login")
def login(email: str = Form(...), password: str = Form(...), session: Session = Depends(get_session)):
    user = session.exec(select(User).where(User.email == email)).first()
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return _token_response(user)


@router.post("/refresh")
def refresh(refresh_token: str = Form(...)):
    token = refresh_access_token(refresh_token)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    return {"access_token": token, "token_type": "bearer"}
