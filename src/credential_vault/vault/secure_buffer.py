"""Wipeable buffers for secret material.

Python ``bytes`` and ``str`` are immutable and cannot be cleared, so every
secret that passes through the vault is copied into a ``bytearray`` owned
by a :class:`SecretBuffer`.  The buffer is a context manager: leaving the
``with`` block zeroes it, whether the block returned or raised.

Usage::

    with credential.secret as secret:
        connect(user, secret.reveal())
    # secret is zeroed here
"""

import hmac
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


class SecretWiped(ValueError):
    """Raised when a wiped SecretBuffer is read."""


def wipe_bytearray(buf: bytearray) -> None:
    """Overwrite a bytearray in place with zeros."""
    for i in range(len(buf)):
        buf[i] = 0


class SecretBuffer:
    """Mutable holder for sensitive bytes with explicit zeroing."""

    __slots__ = ("_buf", "_wiped")

    def __init__(self, data: Union[BytesLike, str] = b""):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buf = bytearray(data)
        self._wiped = False

    @classmethod
    def adopt(cls, buf: bytearray) -> "SecretBuffer":
        """Take ownership of ``buf`` without copying it."""
        instance = cls()
        instance._buf = buf
        return instance

    # ── Access ───────────────────────────────────────────────────────

    def _check(self) -> None:
        if self._wiped:
            raise SecretWiped("Secret buffer has already been wiped")

    def reveal(self) -> bytes:
        """Return an immutable copy of the secret.

        The copy cannot be wiped; prefer :meth:`view` where the consumer
        accepts a buffer.
        """
        self._check()
        return bytes(self._buf)

    def reveal_text(self, encoding: str = "utf-8") -> str:
        self._check()
        return self._buf.decode(encoding)

    def view(self) -> memoryview:
        """Zero-copy read-only view of the secret."""
        self._check()
        return memoryview(self._buf).toreadonly()

    @property
    def wiped(self) -> bool:
        return self._wiped

    # ── Lifecycle ────────────────────────────────────────────────────

    def wipe(self) -> None:
        """Zero the buffer. Safe to call more than once."""
        if not self._wiped:
            wipe_bytearray(self._buf)
            self._wiped = True

    def __enter__(self) -> "SecretBuffer":
        self._check()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self):
        try:
            self.wipe()
        except Exception:
            pass

    # ── Dunder helpers ───────────────────────────────────────────────

    def __len__(self) -> int:
        return 0 if self._wiped else len(self._buf)

    def __eq__(self, other) -> bool:
        if isinstance(other, SecretBuffer):
            if self._wiped or other._wiped:
                return False
            return hmac.compare_digest(bytes(self._buf), bytes(other._buf))
        if isinstance(other, (bytes, bytearray)):
            if self._wiped:
                return False
            return hmac.compare_digest(bytes(self._buf), bytes(other))
        return NotImplemented

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else f"{len(self._buf)} bytes"
        return f"SecretBuffer(<redacted {state}>)"

    __str__ = __repr__
