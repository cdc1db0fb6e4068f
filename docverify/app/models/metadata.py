from pydantic import BaseModel


class StoredFileMetadata(BaseModel):
    stored_filename: str
    original_filename: str
    content_type: str
    extension: str
    size_bytes: int
    storage_path: str
    uploaded_at: str
