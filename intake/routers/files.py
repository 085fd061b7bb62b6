"""
File endpoints: upload, admin listing and admin download.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from intake.auth import User, get_current_admin_user, get_current_user
from intake.config import Settings, get_settings
from intake.exceptions import (
    FileSizeExceededError, InvalidFileTypeError, InvalidPrincipalError,
    LogFormatError, StorageError
)
from intake.models import AuditEventOut, FileListingPage, SearchCriteria, UploadResponse
from intake.records import EventType, RequestContext
from intake.routers.dependencies import blank_to_none, get_request_context
from intake.services.audit_log import AuditLog, get_audit_log, validate_principal
from intake.services.file_metadata import (
    FileMetadata, generate_storage_filename, measure,
    validate_content_type, validate_file_size
)
from intake.storage import LocalStorage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["files"])


def stored_file_path(settings: Settings, username: str, stored_filename: str) -> str:
    """Location of an uploaded file: <storage root>/<owner>/<stored name>."""
    return f"{Path(settings.storage_path).as_posix()}/{username}/{stored_filename}"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=UploadResponse(status="error", message=message).model_dump()
    )


@router.post("/files", response_model=UploadResponse)
async def upload_file(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    settings: Settings = Depends(get_settings),
    storage: LocalStorage = Depends(get_storage),
    audit: AuditLog = Depends(get_audit_log)
):
    """
    Upload a file.

    The file is validated, streamed to storage under the caller's folder
    and then recorded in the caller's audit log. Nothing is recorded for
    an upload that fails.

    **Errors:**
    - 400: file too large, type not allowed, or unusable username
    - 500: storage or audit log failure
    """
    username = current_user.username
    original_filename = file.filename or ""

    try:
        validate_principal(username)
        size = file.size if file.size is not None else measure(file.file)
        validate_file_size(size, settings.max_file_size)
        validate_content_type(file.content_type, settings.allowed_content_types)
    except FileSizeExceededError as e:
        logger.warning(f"File too large: user={username}, file={original_filename}, size={file.size}")
        return _error(400, str(e))
    except InvalidFileTypeError as e:
        logger.warning(
            f"Invalid file type: user={username}, file={original_filename}, type={file.content_type}"
        )
        return _error(400, str(e))
    except InvalidPrincipalError as e:
        logger.warning(f"Upload rejected: {e}")
        return _error(400, "Username cannot be used as a storage folder")

    stored_filename = generate_storage_filename(original_filename)
    path = stored_file_path(settings, username, stored_filename)

    try:
        written = await storage.write_file(path, file.file)
        metadata = FileMetadata(
            original_filename=original_filename or stored_filename,
            stored_filename=stored_filename,
            size=written,
            content_type=file.content_type,
        )
        await audit.record_upload(username, metadata, context)
    except StorageError as e:
        logger.error(f"Upload failed: user={username}, file={original_filename}, error={e}")
        return _error(500, "Upload failed. Please try again or contact support.")

    logger.info(f"File uploaded successfully: user={username}, file={original_filename}, size={written}")

    return UploadResponse(
        status="success",
        message=f"File uploaded successfully: {original_filename}",
        stored_as=stored_filename
    )


@router.get("/files", response_model=FileListingPage)
async def list_files(
    filename: Optional[str] = None,
    username: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_admin_user),
    settings: Settings = Depends(get_settings),
    audit: AuditLog = Depends(get_audit_log)
):
    """
    List uploaded files, newest first.

    All filters are optional; blank values are ignored. Pages are
    0-based and sized by configuration.

    **Authentication:** admin Bearer token
    """
    criteria = SearchCriteria(
        filename=blank_to_none(filename),
        username=blank_to_none(username),
        start_date=start_date,
        end_date=end_date,
        event_type=EventType.UPLOAD.value,
    )

    uploads = await audit.search(criteria.to_filters())

    page_size = settings.listing_page_size
    total_results = len(uploads)
    total_pages = (total_results + page_size - 1) // page_size
    start = page * page_size
    page_results = uploads[start:start + page_size]

    logger.debug(f"File listing: page={page}, results={len(page_results)}, total={total_results}")

    return FileListingPage(
        files=[AuditEventOut.from_record(event) for event in page_results],
        total_results=total_results,
        total_pages=total_pages,
        current_page=page,
        criteria=criteria
    )


@router.get("/files/{username}/{filename}")
async def download_file(
    username: str,
    filename: str,
    current_user: User = Depends(get_current_admin_user),
    context: RequestContext = Depends(get_request_context),
    settings: Settings = Depends(get_settings),
    storage: LocalStorage = Depends(get_storage),
    audit: AuditLog = Depends(get_audit_log)
):
    """
    Download a stored file.

    The download is recorded in the owner's audit log (with the admin as
    actor) before the file is streamed back.

    **Authentication:** admin Bearer token
    """
    try:
        validate_principal(username)
    except InvalidPrincipalError:
        raise HTTPException(status_code=404, detail="File not found")
    if filename in (".", "..") or "/" in filename or "\\" in filename:
        raise HTTPException(status_code=404, detail="File not found")

    path = stored_file_path(settings, username, filename)

    if not await storage.exists(path):
        logger.warning(f"Download failed - file not found: path={path}")
        raise HTTPException(status_code=404, detail="File not found")

    try:
        original_filename = await audit.original_filename(username, filename)
    except (StorageError, LogFormatError) as e:
        logger.warning(f"Original filename lookup failed: owner={username}, file={filename}, error={e}")
        original_filename = filename

    try:
        handle = await storage.open_file(path)
    except StorageError as e:
        logger.error(f"Download failed: owner={username}, file={filename}, error={e}")
        raise HTTPException(status_code=500, detail="Download failed")

    try:
        await audit.record_download(username, original_filename, filename, current_user.username, context)
    except StorageError:
        handle.close()
        raise HTTPException(status_code=500, detail="Download failed")

    logger.info(
        f"File downloaded: owner={username}, downloader={current_user.username}, file={original_filename}"
    )

    return StreamingResponse(
        storage.iter_chunks(handle),
        media_type="application/octet-stream",
        headers={"Content-Disposition": content_disposition(original_filename)}
    )


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and an RFC 5987 UTF-8 name."""
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
