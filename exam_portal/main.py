"""FastAPI entrypoint for the exam portal."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from exam_portal import config
from exam_portal.auth_utils import hash_password
from exam_portal.database import create_db_and_tables, engine
from exam_portal.errors import ExamPortalError
from exam_portal.models import Role, User
from exam_portal.routers import admin as admin_router_module
from exam_portal.routers import auth as auth_router_module
from exam_portal.routers import exams as exams_router_module
from exam_portal.routers import student as student_router_module

logger = logging.getLogger(__name__)

app = FastAPI(title="School Exam Portal")


@app.exception_handler(ExamPortalError)
async def exam_portal_error_handler(request: Request, exc: ExamPortalError):
    """Render domain errors as ``{"kind", "detail", ...}`` with their HTTP status."""
    if exc.status_code >= 500:
        logger.error("Unhandled %s on %s: %s", exc.kind, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        field_path = error.get("loc", [])
        field_name = str(field_path[-1]) if field_path else "body"
        if error.get("type") == "missing":
            errors[field_name] = f"{field_name.replace('_', ' ').capitalize()} is required."
        else:
            errors[field_name] = error.get("msg", "Invalid input")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"kind": "ValidationError", "detail": "Invalid request", "errors": errors},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    kind = {401: "Unauthenticated", 403: "Forbidden", 404: "NotFound"}.get(exc.status_code)
    content = {"detail": exc.detail}
    if kind:
        content["kind"] = kind
    return JSONResponse(status_code=exc.status_code, content=content)


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(admin_router_module.router, prefix="/admin", tags=["admin"])
app.include_router(exams_router_module.router, prefix="/exams", tags=["exams"])
app.include_router(student_router_module.router, tags=["student"])


@app.on_event("startup")
def on_startup():
    """Initialize logging and the database schema, and seed the first super admin."""
    config.configure_logging()
    create_db_and_tables()
    if not config.SEED_ADMIN:
        return
    with Session(engine) as session:
        existing_admin = session.exec(select(User).where(User.role == Role.SUPER_ADMIN)).first()
        if not existing_admin:
            admin_user = User(
                name="System Admin",
                email=config.SEED_ADMIN_EMAIL.strip().lower(),
                password_hash=hash_password(config.SEED_ADMIN_PASSWORD),
                role=Role.SUPER_ADMIN,
            )
            session.add(admin_user)
            session.commit()
            logger.info("Seeded default super admin: %s", admin_user.email)
