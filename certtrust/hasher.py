import hashlib

CHUNK_SIZE = 64 * 1024


def hash_bytes(data: bytes) -> str:
    """SHA-256 fingerprint of a document, as lower-case hex."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
