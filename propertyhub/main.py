import logging
from io import BytesIO

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from .api import properties, property_documents, property_images, property_notes, system
from .config import Base, SessionLocal, engine, settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .core.request_context import REQUEST_ID_HEADER, assign_request_id, reset_request_id
from .services.image_support import property_image_support
from .services.storage import StorageBackend, storage_service

configure_logging(settings.log_level.upper(), settings.log_json)

logger = logging.getLogger(__name__)

app = FastAPI(title="PropertyHub API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

if not settings.uploads_public_path.startswith("http"):
    uploads_route = settings.uploads_public_path
    if storage_service.backend == StorageBackend.LOCAL:
        uploads_dir = settings.uploads_root_path
        uploads_dir.mkdir(parents=True, exist_ok=True)
        app.mount(uploads_route, StaticFiles(directory=str(uploads_dir)), name="uploads")
    else:

        @app.get(f"{uploads_route}/{{path:path}}", include_in_schema=False)
        def proxy_uploads(path: str):
            file_data = storage_service.retrieve_file(path)
            return StreamingResponse(BytesIO(file_data.content), media_type=file_data.content_type)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = assign_request_id(request)
    try:
        response = await call_next(request)
    finally:
        reset_request_id()
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.on_event("startup")
def startup() -> None:
    if settings.auto_create_tables:
        # Development convenience; Alembic migrations own the schema elsewhere.
        Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        try:
            available = property_image_support.probe(session)
        except SQLAlchemyError:
            logger.exception("Could not check for the property images table at startup")
        else:
            logger.info("Property image records %s", "enabled" if available else "disabled")


app.include_router(system.router, tags=["system"])
app.include_router(properties.router)
app.include_router(property_images.router)
app.include_router(property_documents.router)
app.include_router(property_notes.router)
