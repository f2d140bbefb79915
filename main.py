"""
HTML Archive Manager - upload, search and view HTML exports (chat backups etc.).

Endpoints:
  POST   /api/files/upload        - One HTML file (form field htmlFile) → ingested Document
  POST   /api/files/upload-bulk   - HTML files plus the media they reference, in one request
  GET    /api/files               - Paginated listing (no HTML content)
  GET    /api/files/{id}          - Full Document
  PUT    /api/files/{id}          - Metadata patch
  DELETE /api/files/{id}          - Document, its stored HTML and every copied media file
  GET    /api/search              - Full-text search with media-type and date filters
  GET    /api/search/suggestions  - Name autocomplete
  GET    /api/search/stats        - Dashboard counts
  GET    /uploads/{name}          - Managed storage
  GET    /status                  - Health: database and storage

Ingestion is synchronous: uploaded files land in a per-request staging
directory (so an HTML file and its media sit side by side), each HTML file is
run through the HTMLProcessor, the rewritten HTML is stored, and the staging
directory is dropped.
"""
import logging
import shutil
import sqlite3
import uuid
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.concurrency import run_in_threadpool

from config import Settings, get_settings
from app import repository
from app.html_processor import HTMLProcessor, extract_media_references
from app.logging_config import setup_logging
from app.models import Document, DocumentUpdate, MediaType, Pagination
from app.storage import (
    StorageError,
    ensure_storage_dir,
    is_allowed_upload,
    is_html_file,
    remove_files,
    safe_relative_path,
    unique_filename,
)

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="HTML Archive Manager",
    description="Upload HTML exports with their media, search the text, view them inline.",
    version="1.0.0",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----- Helpers -----


def _page_size(limit: Optional[int], s: Settings) -> int:
    return min(limit or s.default_page_size, s.max_page_size)


def _new_staging_dir(s: Settings) -> Path:
    return ensure_storage_dir(Path(s.upload_pending_dir) / uuid.uuid4().hex)


def _stage(staging_dir: Path, filename: str, data: bytes) -> Path:
    path = staging_dir / safe_relative_path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


async def _read_upload(u: UploadFile, s: Settings) -> bytes:
    # multipart parsing already spooled the part, so size is known before reading
    if u.size is not None and u.size > s.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"{u.filename} exceeds the {s.max_upload_bytes} byte upload limit",
        )
    data = await u.read()
    if len(data) > s.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"{u.filename} exceeds the {s.max_upload_bytes} byte upload limit",
        )
    return data


def _ingest_html(staged: Path, raw_html: str, original_name: str, size: int, s: Settings) -> Document:
    """Process one staged HTML file, store the rewritten HTML and persist the Document."""
    processor = HTMLProcessor(s.upload_dir, url_prefix=s.uploads_url_prefix)
    result = processor.process(raw_html, staged)

    stored_name = unique_filename(original_name)
    stored_path = Path(s.upload_dir) / stored_name
    try:
        stored_path.write_text(result.rewritten_html, encoding="utf-8")
        doc = repository.create_document(
            s.database_path,
            file_name=stored_name,
            original_name=original_name,
            file_path=str(stored_path),
            content=result.rewritten_html,
            text_content=result.text_content,
            media=result.media,
            size=size,
        )
    except Exception:
        remove_files([stored_path, *(m.path for m in result.media)])
        raise
    logger.info(
        "Document ingested",
        extra={"document_id": doc.id, "file": original_name, "media_count": len(doc.media)},
    )
    return doc


# ----- Endpoints -----


@app.get("/")
async def root():
    return {"message": "HTML Archive Manager API is running"}


@app.get("/status")
def status(s: Settings = Depends(get_settings)):
    """Check that the database answers and managed storage is writable."""
    database_ok = False
    storage_ok = False
    try:
        database_ok = repository.ping(s.database_path)
    except sqlite3.Error:
        logger.warning("Database check failed", exc_info=True)
    try:
        ensure_storage_dir(s.upload_dir)
        storage_ok = True
    except StorageError:
        logger.warning("Storage check failed", exc_info=True)
    return {
        "database": "online" if database_ok else "offline",
        "storage": "writable" if storage_ok else "unavailable",
    }


@app.post("/api/files/upload", status_code=201)
async def upload_file(
    html_file: Optional[UploadFile] = File(None, alias="htmlFile"),
    s: Settings = Depends(get_settings),
):
    """
    Upload one HTML file. Text is extracted for search, referenced media that
    can be found on disk is copied into storage and the markup rewritten to it.
    """
    if html_file is None or not html_file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not is_html_file(html_file.filename):
        raise HTTPException(status_code=400, detail="File must be an HTML file")
    data = await _read_upload(html_file, s)

    staging_dir = None
    try:
        staging_dir = _new_staging_dir(s)
        staged = _stage(staging_dir, html_file.filename, data)
        raw_html = data.decode("utf-8", errors="replace")
        doc = await run_in_threadpool(_ingest_html, staged, raw_html, html_file.filename, len(data), s)
    except Exception as e:
        logger.error("Upload failed", extra={"file": html_file.filename}, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to upload file: {e}")
    finally:
        if staging_dir is not None:
            shutil.rmtree(staging_dir, ignore_errors=True)

    return {"message": "File uploaded successfully", "file": doc, "mediaCount": len(doc.media)}


@app.post("/api/files/upload-bulk")
async def upload_bulk(
    files: Optional[list[UploadFile]] = File(None),
    s: Settings = Depends(get_settings),
):
    """
    Upload HTML files together with their media. All files are staged side by
    side (sub-directories in the upload names are kept), so relative references
    in the HTML resolve against the uploaded media. Non-HTML files are only
    used as reference targets. One failing HTML file does not stop the rest.
    """
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > s.max_bulk_files:
        raise HTTPException(status_code=400, detail=f"At most {s.max_bulk_files} files per request")
    for u in files:
        if not is_allowed_upload(u.filename or ""):
            raise HTTPException(
                status_code=400,
                detail=f"Only HTML and media files are allowed: {u.filename}",
            )

    results: list[dict] = []
    errors: list[dict] = []
    staging_dir = None
    try:
        staging_dir = _new_staging_dir(s)
        staged: list[tuple[str, Path, bytes]] = []
        for u in files:
            data = await _read_upload(u, s)
            staged.append((u.filename, _stage(staging_dir, u.filename, data), data))

        for name, path, data in staged:
            if not is_html_file(name):
                results.append({
                    "fileName": name,
                    "status": "skipped",
                    "message": "Not an HTML file, processed as media if referenced",
                })
                continue
            try:
                raw_html = data.decode("utf-8", errors="replace")
                doc = await run_in_threadpool(_ingest_html, path, raw_html, Path(name).name, len(data), s)
                results.append({
                    "fileName": name,
                    "status": "success",
                    "id": doc.id,
                    "mediaCount": len(doc.media),
                    "referenceCount": len(extract_media_references(raw_html)),
                })
            except Exception as e:
                logger.error("Bulk item failed", extra={"file": name}, exc_info=True)
                errors.append({"fileName": name, "error": str(e)})
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Bulk upload failed", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to process bulk upload: {e}")
    finally:
        if staging_dir is not None:
            shutil.rmtree(staging_dir, ignore_errors=True)

    return {
        "message": "Bulk upload processed",
        "results": results,
        "errors": errors,
        "totalFiles": len(files),
        "successCount": sum(1 for r in results if r["status"] == "success"),
        "errorCount": len(errors),
    }


@app.get("/api/files")
def list_files(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort_field: str = Query(repository.DEFAULT_SORT_FIELD, alias="sortField"),
    sort_order: str = Query("desc", alias="sortOrder"),
    s: Settings = Depends(get_settings),
):
    limit = _page_size(limit, s)
    files, total = repository.list_documents(s.database_path, page, limit, sort_field, sort_order)
    return {"files": files, "pagination": Pagination.build(total, page, limit)}


@app.get("/api/files/{document_id}")
def get_file(document_id: str, s: Settings = Depends(get_settings)) -> Document:
    doc = repository.get_document(s.database_path, document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="File not found")
    return doc


@app.put("/api/files/{document_id}")
def update_file(document_id: str, body: DocumentUpdate, s: Settings = Depends(get_settings)) -> Document:
    doc = repository.update_document(s.database_path, document_id, body)
    if doc is None:
        raise HTTPException(status_code=404, detail="File not found")
    return doc


@app.delete("/api/files/{document_id}")
def delete_file(document_id: str, s: Settings = Depends(get_settings)):
    """Delete the record, its stored HTML file and every media file it owns."""
    doc = repository.delete_document(s.database_path, document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="File not found")
    remove_files([doc.file_path, *(m.path for m in doc.media)])
    logger.info("Document deleted", extra={"document_id": doc.id, "media_count": len(doc.media)})
    return {"message": "File and associated media deleted successfully"}


@app.get("/api/search")
def search_files(
    search: Optional[str] = Query(None, description="Words matched against name and text"),
    media_type: Optional[MediaType] = Query(None, alias="mediaType"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    sort_field: str = Query(repository.DEFAULT_SORT_FIELD, alias="sortField"),
    sort_order: str = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    s: Settings = Depends(get_settings),
):
    """
    Full-text search over original names and extracted text, optionally
    narrowed to documents holding a media type and to a creation date range.
    sortField=relevance orders text searches by score.
    """
    limit = _page_size(limit, s)
    try:
        files, total = repository.search_documents(
            s.database_path,
            search=search,
            media_type=media_type,
            start_date=start_date,
            end_date=end_date,
            sort_field=sort_field,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid search parameters: {e}")
    return {"files": files, "pagination": Pagination.build(total, page, limit)}


@app.get("/api/search/suggestions")
def suggestions(term: Optional[str] = Query(None), s: Settings = Depends(get_settings)):
    return {"suggestions": repository.suggest_names(s.database_path, term or "")}


@app.get("/api/search/stats")
def stats(s: Settings = Depends(get_settings)):
    return repository.collect_stats(s.database_path)


@app.get(settings.uploads_url_prefix.rstrip("/") + "/{name}")
def serve_upload(name: str, s: Settings = Depends(get_settings)):
    path = Path(s.upload_dir) / name
    if Path(name).name != name or not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
