from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.auth import IdentityMiddleware
from core.config import settings


def configure_middleware(app: FastAPI):
    # Middleware is executed in reverse order of addition (Last added = First execution)

    # 2. Authentication
    app.add_middleware(IdentityMiddleware)

    # 1. CORS (Outermost - Handles Preflight)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )
