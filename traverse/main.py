from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from traverse.api.deps import RequestRejected, request_rejected_handler, unexpected_error_handler
from traverse.api.routes import advisory, analyze, translate
from traverse.config import settings
from traverse.services import logger as log_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_service.log_event(event_type="startup", message="Traverse API starting")
    yield
    log_service.log_event(event_type="shutdown", message="Traverse API stopping")


app = FastAPI(
    title="Traverse",
    description="Streaming visa-application analysis powered by Anthropic Claude",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestRejected, request_rejected_handler)
app.add_exception_handler(Exception, unexpected_error_handler)

# Routes
app.include_router(analyze.router)
app.include_router(advisory.router)
app.include_router(translate.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "traverse"}
