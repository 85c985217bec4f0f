import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select

from .api import bills, dashboard, payments, readings, settings, shares, telegram
from .auth import authenticate_user, create_access_token, get_current_user, get_password_hash
from .db import engine, init_db
from .errors import AppError, error_response
from .logging_config import setup_logging
from .models import Role, User
from .policy import require_action
from .resources import user_resource
from .schemas import UserCreate, UserUpdate
from .seed import ensure_super_admin, seed_default_settings

logger = logging.getLogger(__name__)

app = FastAPI(title="House Utility Billing")

# Strict CORS; set allowed origins via env `CORS_ALLOWED`
allowed = os.getenv("CORS_ALLOWED", "").split(",") if os.getenv("CORS_ALLOWED") else []
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (bills, shares, payments, settings, readings, dashboard, telegram):
    app.include_router(module.router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


@app.on_event("startup")
def on_startup():
    setup_logging()
    init_db()
    with Session(engine) as session:
        # Default super admin for initial setup (password from env only)
        admin_pwd = os.getenv("ADMIN_PASSWORD")
        if admin_pwd:
            ensure_super_admin(session, os.getenv("ADMIN_USER", "admin"), admin_pwd)
        seed_default_settings(session)
        session.commit()
    logger.info("house utility billing started")


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/auth/token")
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = authenticate_user(form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=400, detail="Incorrect username or password")
    access_token = create_access_token(data={"sub": user.username})
    return {"access_token": access_token, "token_type": "bearer", "user": user_resource(user)}


@app.get("/api/auth/me")
def read_me(current_user: User = Depends(get_current_user)):
    return user_resource(current_user)


@app.get("/api/users")
def list_users(
    role: Optional[Role] = None,
    residents_only: bool = False,
    current_user: User = Depends(require_action("view_users")),
):
    with Session(engine) as session:
        stmt = select(User).order_by(User.name, User.username)
        if role is not None:
            stmt = stmt.where(User.role == role.value)
        if residents_only:
            stmt = stmt.where(User.role == Role.resident.value)
        return [user_resource(u) for u in session.exec(stmt).all()]


@app.post("/api/users", status_code=201)
def create_user(payload: UserCreate, current_user: User = Depends(require_action("manage_users"))):
    with Session(engine) as session:
        existing = session.exec(select(User).where(User.username == payload.username)).first()
        if existing:
            raise HTTPException(status_code=400, detail="User exists")
        user = User(
            username=payload.username,
            name=payload.name or payload.username,
            password_hash=get_password_hash(payload.password),
            role=payload.role.value,
            telegram_chat_id=payload.telegram_chat_id,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        logger.info("user %s (%s) created by %s", user.username, user.role, current_user.username)
        return user_resource(user)


@app.api_route("/api/users/{user_id}", methods=["PUT", "PATCH"])
def update_user(
    user_id: int,
    payload: UserUpdate,
    current_user: User = Depends(require_action("manage_users")),
):
    changes = payload.model_dump(exclude_unset=True)
    with Session(engine) as session:
        user = session.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        password = changes.pop("password", None)
        if password:
            user.password_hash = get_password_hash(password)
        if changes.get("role") is not None:
            user.role = changes.pop("role").value
        for field in ("name", "is_active"):
            if changes.get(field) is not None:
                setattr(user, field, changes[field])
        if "telegram_chat_id" in changes:
            user.telegram_chat_id = changes["telegram_chat_id"] or None
        session.add(user)
        session.commit()
        session.refresh(user)
        return user_resource(user)
