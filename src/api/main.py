from fastapi import FastAPI

from api.v1.endpoints.chat import router as chat_router
from api.v1.endpoints.conversations import router as conversations_router
from core.errors import register_exception_handlers
from core.lifespan import lifespan
from core.middleware import configure_middleware

app = FastAPI(title="Ask Javier", lifespan=lifespan)

configure_middleware(app)
register_exception_handlers(app)

app.include_router(chat_router, tags=["chat"])
app.include_router(conversations_router, prefix="/conversations", tags=["conversations"])


@app.get("/health")
async def health():
    return {"status": "ok"}
