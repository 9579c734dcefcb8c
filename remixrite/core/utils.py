import uuid
import hashlib
import os
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional

__all__ = [
    "OWNER_ADDRESS_PATTERN",
    "new_id",
    "utcnow",
    "is_valid_owner_address",
    "dedupe_ids",
    "calculate_content_hash",
    "media_kind_for",
    "sanitize_filename",
    "create_media_storage_path",
    "format_file_size",
]

OWNER_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

AUDIO_TYPES = {"audio/mpeg", "audio/mp3", "audio/wav", "audio/ogg", "audio/flac"}
VIDEO_TYPES = {"video/mp4", "video/avi", "video/mov", "video/quicktime", "video/webm"}

def new_id() -> str:
    """Generate a new unique record ID."""
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def is_valid_owner_address(address: Optional[str]) -> bool:
    """Owner addresses are 0x-prefixed, 40 hex characters."""
    return bool(address) and OWNER_ADDRESS_PATTERN.match(address) is not None

def dedupe_ids(ids: Iterable[str]) -> List[str]:
    """Drop blanks and repeats, keeping first-seen order."""
    seen = set()
    result = []
    for raw in ids:
        if raw is None:
            continue
        clip_id = str(raw).strip()
        if clip_id and clip_id not in seen:
            seen.add(clip_id)
            result.append(clip_id)
    return result

def calculate_content_hash(data: bytes, algorithm: str = "sha256") -> str:
    """Hash an in-memory artifact."""
    hash_obj = hashlib.new(algorithm)
    hash_obj.update(data)
    return hash_obj.hexdigest()

def media_kind_for(content_type: Optional[str], filename: Optional[str] = None) -> Optional[str]:
    """Map a MIME type (or, failing that, a file extension) to 'audio' or 'video'."""
    if content_type in AUDIO_TYPES:
        return "audio"
    if content_type in VIDEO_TYPES:
        return "video"

    if filename:
        filename_lower = filename.lower()
        if filename_lower.endswith(('.mp3', '.wav', '.ogg', '.flac')):
            return "audio"
        if filename_lower.endswith(('.mp4', '.avi', '.mov', '.webm')):
            return "video"

    return None

def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe storage."""
    if not filename:
        return "unnamed_file"

    # Keep only alphanumeric, dots, dashes, underscores
    sanitized = re.sub(r'[^\w\-_\.]', '_', filename)
    sanitized = re.sub(r'_{2,}', '_', sanitized)

    # Ensure it doesn't start with a dot (hidden file)
    if sanitized.startswith('.'):
        sanitized = 'file_' + sanitized

    if len(sanitized) > 255:
        name, ext = os.path.splitext(sanitized)
        sanitized = name[:255-len(ext)] + ext

    return sanitized

def create_media_storage_path(record_id: str, filename: str, media_type: str) -> str:
    """Create a structured storage path: media_type/year/month/record_id_filename."""
    now = utcnow()
    prefix = f"{record_id}_" if record_id else ""
    return f"{media_type}/{now:%Y}/{now:%m}/{prefix}{sanitize_filename(filename)}"

def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable format."""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while size_bytes >= 1024 and i < len(size_names) - 1:
        size_bytes /= 1024.0
        i += 1

    return f"{size_bytes:.1f} {size_names[i]}"
