"""Windows DPAPI wrapper for the native protection backend.

Protects small blobs (credential secrets) under the current Windows user
via CryptProtectData/CryptUnprotectData.  Everywhere else the calls raise
OSError so the caller can report the backend as unsupported.

Public API
----------
is_available() -> bool
protect(data, *, description="", entropy=None) -> bytes   (data: any buffer)
unprotect(data, *, entropy=None) -> bytes
"""

import ctypes
import sys
from typing import Optional, Union

BufferLike = Union[bytes, bytearray, memoryview]

# CryptProtectData / CryptUnprotectData flags
CRYPTPROTECT_UI_FORBIDDEN = 0x1


class DATA_BLOB(ctypes.Structure):
    _fields_ = [("cbData", ctypes.c_uint32),
                ("pbData", ctypes.POINTER(ctypes.c_char))]


def is_available() -> bool:
    """True when running on Windows with crypt32 loadable."""
    if sys.platform != "win32":
        return False
    try:
        ctypes.windll.crypt32  # type: ignore[attr-defined]
    except (AttributeError, OSError):
        return False
    return True


def _ensure_windows() -> None:
    if sys.platform != "win32":
        raise OSError("DPAPI is only available on Windows")


def _to_blob(data: BufferLike):
    size = memoryview(data).nbytes
    buf = (ctypes.c_char * size).from_buffer_copy(data)
    blob = DATA_BLOB(size, ctypes.cast(buf, ctypes.POINTER(ctypes.c_char)))
    # Caller keeps buf alive for the duration of the API call
    return blob, buf


def _take_blob(blob: DATA_BLOB) -> bytes:
    """Copy bytes out of an API-allocated blob, zero it and LocalFree it."""
    ptr = ctypes.cast(blob.pbData, ctypes.c_void_p)
    size = int(blob.cbData)
    try:
        return ctypes.string_at(ptr, size)
    finally:
        ctypes.memset(ptr, 0, size)
        ctypes.windll.kernel32.LocalFree(ptr)  # type: ignore[attr-defined]


def protect(data: BufferLike, *, description: str = "", entropy: Optional[bytes] = None) -> bytes:
    """Encrypt ``data`` bound to the current user.

    ``entropy`` must be passed again to :func:`unprotect`.

    Raises:
        OSError: DPAPI unavailable or CryptProtectData failed.
    """
    _ensure_windows()
    in_blob, in_buf = _to_blob(data)
    out_blob = DATA_BLOB()
    desc = ctypes.c_wchar_p(description) if description else None
    entropy_blob, _entropy_buf = _to_blob(entropy) if entropy else (None, None)
    try:
        ok = ctypes.windll.crypt32.CryptProtectData(  # type: ignore[attr-defined]
            ctypes.byref(in_blob),
            desc,
            ctypes.byref(entropy_blob) if entropy_blob is not None else None,
            None,
            None,
            CRYPTPROTECT_UI_FORBIDDEN,
            ctypes.byref(out_blob),
        )
    finally:
        ctypes.memset(in_buf, 0, ctypes.sizeof(in_buf))
    if not ok:
        raise OSError("CryptProtectData failed")
    return _take_blob(out_blob)


def unprotect(data: bytes, *, entropy: Optional[bytes] = None) -> bytes:
    """Decrypt a DPAPI blob produced for the current user.

    Raises:
        OSError: DPAPI unavailable, or the blob belongs to another
            user/machine or is corrupt.
    """
    _ensure_windows()
    in_blob, _in_buf = _to_blob(data)
    out_blob = DATA_BLOB()
    entropy_blob, _entropy_buf = _to_blob(entropy) if entropy else (None, None)
    ok = ctypes.windll.crypt32.CryptUnprotectData(  # type: ignore[attr-defined]
        ctypes.byref(in_blob),
        None,
        ctypes.byref(entropy_blob) if entropy_blob is not None else None,
        None,
        None,
        CRYPTPROTECT_UI_FORBIDDEN,
        ctypes.byref(out_blob),
    )
    if not ok:
        raise OSError("CryptUnprotectData failed")
    return _take_blob(out_blob)
