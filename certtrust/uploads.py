import os
import time
import logging

from werkzeug.utils import secure_filename

from .errors import BadRequest

logger = logging.getLogger(__name__)


def display_name(handle):
    """The uploader's file name, without the owner and timestamp prefix."""
    return os.path.basename(handle).split("_", 2)[-1]


class UploadStore:
    """Temporary home for documents between an issuance Prepare and its Confirm.

    Handles look like ``<owner>_<ms>_<name>`` so that only the institution
    that uploaded a document can hand it to Confirm.
    """

    def __init__(self, upload_dir):
        self.upload_dir = upload_dir
        os.makedirs(upload_dir, exist_ok=True)

    def save(self, file_storage, owner):
        owner = secure_filename(str(owner or ""))
        if not owner:
            raise BadRequest("Uploads need an owner")
        name = secure_filename(file_storage.filename or "") or "document"
        handle = f"{owner}_{int(time.time() * 1000)}_{name}"
        file_storage.save(os.path.join(self.upload_dir, handle))
        return handle

    def owns(self, handle, owner):
        return bool(handle and owner) and handle.startswith(f"{secure_filename(str(owner))}_")

    def path(self, handle):
        safe = secure_filename(handle or "")
        if not safe or safe != handle:
            raise BadRequest("Invalid file handle")
        return os.path.join(self.upload_dir, safe)

    def exists(self, handle):
        try:
            return os.path.exists(self.path(handle))
        except BadRequest:
            return False

    def discard(self, handle):
        if not handle:
            return
        try:
            os.remove(self.path(handle))
        except FileNotFoundError:
            pass
        except BadRequest:
            logger.warning("Refusing to delete invalid upload handle %r", handle)
