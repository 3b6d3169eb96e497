import os
import secrets
import tempfile

from flask import current_app


def ensure_dir(path: str) -> None:
    """Create directory if missing (mkdir -p equivalent)."""
    os.makedirs(path, exist_ok=True)


def write_atomic(path: str, data, mode: str = "wb") -> None:
    """Write data to a temporary file then atomically rename to target path."""
    dir_path = os.path.dirname(path)
    ensure_dir(dir_path)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path)
    try:
        with os.fdopen(fd, mode) as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def vendor_invoice_dir() -> str:
    root = current_app.config.get("UPLOAD_ROOT", "/srv/uploads")
    return os.path.join(root, "vendor-invoices")


def new_vendor_invoice_filename() -> str:
    return f"invoice-{secrets.token_hex(8)}.pdf"


def vendor_invoice_path(filename: str | None) -> str | None:
    if not filename:
        return None
    # stored names never contain separators; refuse anything else
    if os.path.basename(filename) != filename:
        return None
    return os.path.join(vendor_invoice_dir(), filename)
