"""Upload validation: content-type allow-list, magic bytes and extensions.

Signature sniffing stops a caller from smuggling other content into storage
by lying about the declared content type. Size limits are enforced by the
caller before any signature check.
"""

from typing import BinaryIO

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10 MB

SIGNATURE_LENGTH = 4

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "application/pdf")

_SIGNATURES: dict[str, bytes] = {
    "image/jpeg": b"\xff\xd8\xff",
    "image/png": b"\x89PNG",
    "application/pdf": b"%PDF",
}

_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "application/pdf": ".pdf",
}


def is_allowed_type(content_type: str | None) -> bool:
    """Check a declared content type against the allow-list (case-insensitive)."""
    if not content_type or not content_type.strip():
        return False
    return content_type.lower() in ALLOWED_CONTENT_TYPES


def _read_head(source: bytes | bytearray | memoryview | BinaryIO) -> bytes:
    if isinstance(source, bytes | bytearray | memoryview):
        return bytes(source[:SIGNATURE_LENGTH])

    # Streams are rewound for the read and left where the caller had them
    position = source.tell()
    try:
        source.seek(0)
        return source.read(SIGNATURE_LENGTH)
    finally:
        source.seek(position)


def has_valid_signature(
    source: bytes | bytearray | memoryview | BinaryIO, content_type: str | None
) -> bool:
    """Check that the first bytes of the content match the declared type.

    Args:
        source: Raw content, or a seekable binary stream over it
        content_type: Declared MIME type

    Returns:
        False when fewer than four bytes are available, when the type is not
        one we know a signature for, or when the bytes do not match.
    """
    head = _read_head(source)
    if len(head) < SIGNATURE_LENGTH:
        return False

    signature = _SIGNATURES.get((content_type or "").lower())
    if signature is None:
        return False
    return head.startswith(signature)


def extension_for(content_type: str) -> str:
    """Map an allowed content type to the file extension used in object paths.

    Raises:
        ValueError: the type is not allowed; callers check is_allowed_type first
    """
    try:
        return _EXTENSIONS[content_type.lower()]
    except KeyError:
        raise ValueError(f"Unsupported content type: {content_type}") from None


def content_type_for(extension: str) -> str:
    """Map an object-path extension back to its content type."""
    normalized = extension.lower()
    if normalized == ".jpeg":
        normalized = ".jpg"
    for content_type, ext in _EXTENSIONS.items():
        if ext == normalized:
            return content_type
    raise ValueError(f"Unsupported file extension: {extension}")
