import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

import config
from db import create_db_and_tables
from routers import admin, auth, items, notifications, pages, reports, requests, ui, users

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Free Stuff Niels Brock")

# authlib keeps the OAuth state in the starlette session
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SECRET_KEY,
    session_cookie=config.OAUTH_STATE_COOKIE,
)

config.MEDIA_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/static", StaticFiles(directory=str(config.BASE_DIR / "static")), name="static")
app.mount(config.MEDIA_URL, StaticFiles(directory=str(config.MEDIA_DIR)), name="media")


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(items.router, prefix="/items")
app.include_router(requests.router, prefix="/requests")
app.include_router(reports.router, prefix="/reports")
app.include_router(notifications.router, prefix="/notifications")
app.include_router(admin.router, prefix="/admin")

app.include_router(pages.router)
app.include_router(ui.router)
