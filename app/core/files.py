import logging
import os
import uuid
import shutil
from fastapi import UploadFile, HTTPException
from app.core.config import settings
from app.schemas.achievement import AttachmentIn

logger = logging.getLogger(__name__)

ALLOWED_ATTACHMENT_EXT = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

def ensure_media_dirs():
    os.makedirs(settings.MEDIA_ROOT, exist_ok=True)
    os.makedirs(os.path.join(settings.MEDIA_ROOT, "achievements"), exist_ok=True)

def _ext_from_upload(file: UploadFile) -> str:
    _, ext = os.path.splitext(file.filename or "")
    ext = ext.lower()
    if ext not in ALLOWED_ATTACHMENT_EXT:
        allowed = ", ".join(sorted(ALLOWED_ATTACHMENT_EXT))
        raise HTTPException(status_code=400, detail=f"Unsupported file type; allowed: {allowed}")
    return ext

def save_attachment_file(student_id: int, file: UploadFile) -> AttachmentIn:
    """Stores an uploaded attachment under MEDIA_ROOT/achievements/<student_id>/ and describes it."""
    ext = _ext_from_upload(file)
    ensure_media_dirs()

    tmp_dir = os.path.join(settings.MEDIA_ROOT, "tmp")
    os.makedirs(tmp_dir, exist_ok=True)
    tmp_path = os.path.join(tmp_dir, f"{uuid.uuid4().hex}.upload")
    total = 0
    with open(tmp_path, "wb") as out:
        while True:
            chunk = file.file.read(1024 * 1024)
            if not chunk:
                break
            total += len(chunk)
            if total > settings.MAX_UPLOAD_BYTES:
                out.close()
                os.remove(tmp_path)
                limit_mb = settings.MAX_UPLOAD_BYTES // (1024 * 1024)
                raise HTTPException(status_code=413, detail=f"Attachment too large (limit {limit_mb} MB)")
            out.write(chunk)

    dest_dir = os.path.join(settings.MEDIA_ROOT, "achievements", str(student_id))
    os.makedirs(dest_dir, exist_ok=True)
    dest_name = f"{uuid.uuid4().hex}{ext}"
    dest_path = os.path.join(dest_dir, dest_name)
    shutil.move(tmp_path, dest_path)

    rel_path = os.path.relpath(dest_path, settings.MEDIA_ROOT).replace("\\", "/")
    logger.info("Stored attachment %s (%s bytes) for student %s", rel_path, total, student_id)
    return AttachmentIn(
        filename=file.filename,
        url=f"{settings.MEDIA_URL.rstrip('/')}/{rel_path}",
        content_type=file.content_type or ALLOWED_ATTACHMENT_EXT[ext],
    )

def delete_file_if_local(url: str | None):
    """Removes a stored attachment when the owning document could not be updated."""
    if not url:
        return
    prefix = settings.MEDIA_URL.rstrip("/") + "/"
    if not url.startswith(prefix):
        return
    abs_path = os.path.abspath(os.path.join(settings.MEDIA_ROOT, url[len(prefix):].replace("/", os.sep)))
    root = os.path.abspath(settings.MEDIA_ROOT)
    if os.path.commonpath([root, abs_path]) != root:
        return
    if os.path.isfile(abs_path):
        try:
            os.remove(abs_path)
        except OSError:
            logger.warning("Could not remove attachment file %s", abs_path, exc_info=True)
