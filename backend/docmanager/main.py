# backend/docmanager/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import engine
from . import models
from .api import documents
from .exceptions import DocManagerError
from .services.documents import document_pipeline
from .utils.logging import api_logger

# Create all tables on startup
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    document_pipeline.worker_pool.start()
    yield
    document_pipeline.shutdown()


app = FastAPI(title="Document Manager API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your actual frontend URL
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(documents.router)


@app.exception_handler(DocManagerError)
async def docmanager_error_handler(request: Request, exc: DocManagerError):
    log = api_logger.error if exc.status_code >= 500 else api_logger.warning
    log(f"{type(exc).__name__}: {exc.detail}", extra={
        "path": request.url.path,
        "method": request.method,
        "status_code": exc.status_code
    })
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/")
async def root():
    return {"message": "Document Manager API is running"}
