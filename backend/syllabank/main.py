from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings, configure_logging, load_settings
from .errors import SyllabankError
from .ingest import coerce_value, ingest_configured_csvs
from .models import make_engine
from .store import SyllabusStore


logger = logging.getLogger(__name__)


def get_store(request: Request) -> SyllabusStore:
    return request.app.state.store


def query_fields(request: Request) -> dict:
    # Query strings are untyped; coerce like CSV cells so year=2018 filters as a number.
    return {key: coerce_value(value) for key, value in request.query_params.items()}


def bad_request(exc: SyllabankError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


def create_app(settings: Optional[Settings] = None, engine: Optional[AsyncEngine] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = engine is None
        db_engine = make_engine(settings.database_url) if owned else engine
        store = None
        try:
            store = await SyllabusStore.create(db_engine)
            app.state.store = store
            counts = await ingest_configured_csvs(store, settings)
            if counts:
                logger.info("loaded CSV data: %s", counts)
            yield
        finally:
            if store is not None:
                await store.end()
            if owned:
                await db_engine.dispose()

    app = FastAPI(title="Syllabank", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

    site_dir = Path(settings.web_site_dir)
    pdf_dir = Path(settings.web_pdf_dir)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/")
    def homepage():
        page = site_dir / settings.web_homepage
        if not page.is_file():
            raise HTTPException(status_code=404, detail="No homepage")
        return FileResponse(page)

    @app.get("/api/select")
    async def select_any(request: Request, store: SyllabusStore = Depends(get_store)):
        try:
            return await store.select(query_fields(request))
        except SyllabankError as exc:
            raise bad_request(exc) from exc

    @app.get("/api/selectSylabi")
    async def select_sylabi(request: Request, store: SyllabusStore = Depends(get_store)):
        try:
            return await store.select_syllabi(query_fields(request))
        except SyllabankError as exc:
            raise bad_request(exc) from exc

    @app.get("/api/selectProfessors")
    async def select_professors(request: Request, store: SyllabusStore = Depends(get_store)):
        try:
            return await store.select_professors(query_fields(request))
        except SyllabankError as exc:
            raise bad_request(exc) from exc

    @app.get("/api/selectCourses")
    async def select_courses(request: Request, store: SyllabusStore = Depends(get_store)):
        try:
            return await store.select_courses(query_fields(request))
        except SyllabankError as exc:
            raise bad_request(exc) from exc

    @app.get("/api/selectFiles")
    async def select_files(request: Request, store: SyllabusStore = Depends(get_store)):
        try:
            return await store.select_files(query_fields(request))
        except SyllabankError as exc:
            raise bad_request(exc) from exc

    @app.get("/api/searchCourses/{name}")
    async def search_courses(name: str, store: SyllabusStore = Depends(get_store)):
        try:
            return await store.search_courses(name)
        except SyllabankError as exc:
            raise bad_request(exc) from exc

    @app.get("/api/searchProfessors/{name}")
    async def search_professors(name: str, store: SyllabusStore = Depends(get_store)):
        try:
            return await store.search_professors(name)
        except SyllabankError as exc:
            raise bad_request(exc) from exc

    @app.get("/api/sendFile/{file_id}")
    async def send_file(file_id: str, store: SyllabusStore = Depends(get_store)):
        try:
            key = int(file_id)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid file id {file_id!r}") from None
        try:
            rows = await store.select_files({"file_id": key})
        except SyllabankError as exc:
            raise bad_request(exc) from exc
        if not rows:
            raise HTTPException(status_code=400, detail=f"No file with id {key} exists")
        base = pdf_dir.resolve()
        path = (base / rows[0]["filename"]).resolve()
        if base not in path.parents or not path.is_file():
            raise HTTPException(status_code=400, detail=f"File {rows[0]['filename']} is missing")
        return FileResponse(path, filename="download.pdf", media_type="application/pdf")

    # Registered last so the API routes above take precedence.
    if site_dir.is_dir():
        app.mount("/", StaticFiles(directory=site_dir), name="site")

    return app


def run() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.web_host, port=settings.web_port)


if __name__ == "__main__":
    run()
