import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from ..config import settings
from ..models.metadata import StoredFileMetadata
from ..utils.logging import logger


class StorageService:
    """Persists uploaded documents on disk and reads them back."""

    MIME_EXTENSIONS = {
        "application/pdf": "pdf",
        "image/jpeg": "jpg",
        "image/png": "png",
        "image/webp": "webp",
    }

    @property
    def storage_root(self) -> Path:
        root = settings.upload_path
        root.mkdir(parents=True, exist_ok=True)
        return root

    async def store_upload(self, upload: UploadFile) -> StoredFileMetadata:
        """Validate an upload and write it under a fresh UUID name."""
        original_filename = upload.filename or f"upload-{uuid.uuid4().hex}"
        content_type = (upload.content_type or "").lower()

        if content_type not in {mime.lower() for mime in settings.ALLOWED_MIME_TYPES}:
            logger.log_error("unsupported_file_type", {
                "filename": original_filename,
                "content_type": content_type
            })
            raise ValueError(f"Unsupported file type: {content_type or 'unknown'}")

        file_bytes = await upload.read()
        size_bytes = len(file_bytes)

        if size_bytes == 0:
            raise ValueError(f"File '{original_filename}' is empty")

        if size_bytes > settings.max_file_size_bytes:
            logger.log_error("file_too_large", {
                "filename": original_filename,
                "size_bytes": size_bytes,
                "max_bytes": settings.max_file_size_bytes
            })
            raise ValueError(
                f"File '{original_filename}' exceeds the maximum size of {settings.MAX_FILE_SIZE_MB} MB"
            )

        extension = self._get_extension(original_filename, content_type)
        stored_name = f"{uuid.uuid4()}.{extension}"
        stored_path = self.storage_root / stored_name

        with stored_path.open("wb") as output:
            output.write(file_bytes)

        metadata = StoredFileMetadata(
            stored_filename=stored_name,
            original_filename=original_filename,
            content_type=content_type,
            extension=extension,
            size_bytes=size_bytes,
            storage_path=str(stored_path),
            uploaded_at=datetime.utcnow().isoformat() + "Z",
        )
        logger.log_step("document_stored", metadata.model_dump())
        return metadata

    def path_for(self, stored_filename: str) -> Optional[Path]:
        """Resolve a stored file name, refusing anything outside the upload root."""
        if not stored_filename:
            return None
        root = self.storage_root.resolve()
        candidate = (root / stored_filename).resolve()
        if candidate.parent != root or not candidate.is_file():
            return None
        return candidate

    def read_bytes(self, stored_filename: str) -> Optional[bytes]:
        path = self.path_for(stored_filename)
        return path.read_bytes() if path else None

    def remove(self, stored_filename: str) -> bool:
        path = self.path_for(stored_filename)
        if not path:
            return False
        path.unlink()
        logger.log_step("document_removed", {"stored_filename": stored_filename})
        return True

    def _get_extension(self, filename: str, content_type: str) -> str:
        suffix = Path(filename).suffix.lower().lstrip(".")
        if suffix:
            return suffix
        return self.MIME_EXTENSIONS.get(content_type, "bin")


storage_service = StorageService()
