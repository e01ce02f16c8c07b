"""
Main entrypoint of the application

This module contains the main entrypoint of the application. It is responsible
for creating the FastAPI application and setting up the routes and middleware.
"""
from contextlib import asynccontextmanager
import os
import fastapi
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware
from sqlalchemy.exc import IntegrityError

from epic_auth.api.router import api_router, tags_metadata
from epic_auth.core import db as database
from epic_auth.core.config import settings, logger
from epic_auth.core.middleware import VerificationRateLimiterMiddleware
from epic_auth.core.utils import app_path, custom_generate_unique_id


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover   # pylint: disable=unused-argument, redefined-outer-name
    """ Lifespan hook to run on application startup and shutdown. """
    logger.info("Starting up...")
    # Create folders
    logger.info("Creating folders...")
    os.makedirs(app_path("data"), exist_ok=True)
    if settings.LOG_FILE_ENABLED:
        os.makedirs(app_path(os.path.join("data", "logs")), exist_ok=True)
    # Database
    logger.info("Creating or Loading the database tables...")
    await database.sessionmanager.init()
    # Rate Limit
    app.state.redis_client = None
    if settings.RATE_LIMITER_ENABLED and settings.REDIS_URL is not None:
        try:
            redis_client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
            redis_client.ping()
            app.state.redis_client = redis_client
            logger.info("Redis available.")
        except RedisConnectionError:
            logger.warning("Redis unavailable. Using in-memory TTL cache.")
        except ValueError as e:
            logger.warning(f"Redis unavailable. Using in-memory TTL cache. Error: {e}")
    logger.success("Initialization completed.")
    yield  # This is when the application code will run
    logger.info("Shutting down...")
    if app.state.redis_client is not None:
        app.state.redis_client.close()
    if database.sessionmanager.engine is not None:
        await database.sessionmanager.close()
    logger.info("Shutdown completed.")


app = FastAPI(
    debug=settings.LOG_LEVEL == "DEBUG",
    title=settings.PROJECT_NAME,
    summary="Verification codes, two-factor authentication and account recovery.",
    description="""
Authentication service of **Epic Notes**.

Every flow that needs a proof of possession (onboarding, password reset, email
change, two-factor enrollment and login) goes through a one-time code, either
sent by email or generated by an authenticator app.
""",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    contact={
        "name": settings.CONTACT_EMAIL.split("@")[0] if settings.CONTACT_EMAIL else "Contact",
        "url": f"{settings.FRONTEND_URL}/contact",
        "email": settings.CONTACT_EMAIL,
    },
    generate_unique_id_function=custom_generate_unique_id,
)

app.include_router(api_router, prefix=settings.API_STR)


# NOTE: The order of the middlewares is important
# It's in reverse order of execution (Session->CORS->RateLimiter)
if settings.RATE_LIMITER_ENABLED:
    app.add_middleware(
        VerificationRateLimiterMiddleware,
        max_attempts=settings.RATE_LIMITER_MAX_ATTEMPTS,
        window_seconds=settings.RATE_LIMITER_WINDOW_SECONDS,
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SessionMiddleware, secret_key=settings.JWT_SECRET_KEY)


# ----- Exceptions Handler ----- #


@app.exception_handler(IntegrityError)
async def _catch_integrity_error(request: Request, exc: IntegrityError):   # pylint: disable=unused-argument
    # NOTE: UNIQUE errors name the column last ("... users.email")
    message = str(exc.orig)
    logger.warning(f"Integrity error: {message}")
    if "UNIQUE" in message.upper():
        column = message.split(" ")[-1].split(".")[-1]
        return JSONResponse(status_code=400, content={"detail": f"This {column} already exists."})
    return JSONResponse(status_code=400, content={"detail": message})


# ----- Debugging ----- #

@app.get("/ping", tags=["DEBUG"])
def _ping():
    logger.info("Pong!")
    return "pong"


@app.get("/version", tags=["DEBUG"])
def _version():
    return JSONResponse({
        "FastAPI_Version": fastapi.__version__,
        "Project_Version": app.version,
    })
