# Tests for the credential codec and backends
# Covers: portable + native round-trips, record layout, wrong-key rejection,
#         tamper detection, format-version gate, backend tag checks,
#         atomic writes, unwritable destinations

import base64
import ctypes
import errno
import json
import os
import stat
import sys

import pytest

from credential_vault.vault.backends import (
    NONCE_LENGTH,
    TAG_LENGTH,
    NativeProtectionBackend,
    PortableSymmetricBackend,
)
from credential_vault.vault.codec import CredentialCodec, atomic_write_text
from credential_vault.vault.exceptions import (
    BackendMismatch,
    DecryptionFailed,
    EncryptionFailed,
    KeyFileWrongLength,
    PathUnwritable,
    RecordUnreadable,
    UnsupportedBackend,
    UnsupportedFormatVersion,
)
from credential_vault.vault.key_deriver import write_key_file
from credential_vault.vault.models import FORMAT_VERSION, Credential


# ── Helpers ───────────────────────────────────────────────────────────


@pytest.fixture
def codec():
    return CredentialCodec()


@pytest.fixture
def portable_a(machine_a):
    return PortableSymmetricBackend(environ=machine_a)


@pytest.fixture
def portable_b(machine_b):
    return PortableSymmetricBackend(environ=machine_b)


@pytest.fixture
def stored(codec, portable_a, tmp_path):
    """A portable record for svc-user / p@ss1 on machine A."""
    path = tmp_path / "cred.json"
    codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, portable_a)
    return path


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def _flip_bit(b64_value, index=0, bit=0):
    raw = bytearray(base64.b64decode(b64_value))
    raw[index] ^= 1 << bit
    return base64.b64encode(bytes(raw)).decode("ascii")


# ── Portable Symmetric ───────────────────────────────────────────────


class TestPortableRoundTrip:

    def test_store_then_load(self, codec, portable_a, stored):
        with codec.load(stored, portable_a) as cred:
            assert cred.identifier == "svc-user"
            assert cred.secret.reveal_text() == "p@ss1"

    def test_record_layout(self, stored):
        data = _read(stored)
        assert data["format_version"] == 1
        assert data["backend"] == "portable_symmetric"
        assert data["identifier"] == "svc-user"
        assert len(base64.b64decode(data["nonce"])) >= 12
        assert len(base64.b64decode(data["ciphertext"])) > 0
        assert len(base64.b64decode(data["tag"])) == TAG_LENGTH

    def test_secret_not_in_file(self, stored):
        assert "p@ss1" not in stored.read_text(encoding="utf-8")
        assert b"p@ss1" not in stored.read_bytes()

    def test_binary_secret_round_trip(self, codec, portable_a, tmp_path):
        secret = bytes(range(256))
        path = tmp_path / "bin.json"
        codec.store(Credential.from_plaintext("blob", secret), path, portable_a)
        with codec.load(path, portable_a) as cred:
            assert cred.secret.reveal() == secret

    def test_empty_secret_round_trip(self, codec, portable_a, tmp_path):
        path = tmp_path / "empty.json"
        codec.store(Credential.from_plaintext("nobody", b""), path, portable_a)
        with codec.load(path, portable_a) as cred:
            assert cred.secret.reveal() == b""

    def test_fresh_nonce_per_store(self, codec, portable_a, tmp_path):
        cred = Credential.from_plaintext("svc-user", "p@ss1")
        codec.store(cred, tmp_path / "one.json", portable_a)
        codec.store(cred, tmp_path / "two.json", portable_a)
        one, two = _read(tmp_path / "one.json"), _read(tmp_path / "two.json")
        assert one["nonce"] != two["nonce"]
        assert one["ciphertext"] != two["ciphertext"]

    def test_store_does_not_wipe_caller_secret(self, codec, portable_a, tmp_path):
        cred = Credential.from_plaintext("svc-user", "p@ss1")
        codec.store(cred, tmp_path / "c.json", portable_a)
        assert cred.secret.reveal_text() == "p@ss1"

    def test_key_file_round_trip(self, codec, tmp_path):
        key_file = write_key_file(tmp_path / "vault.key")
        backend = PortableSymmetricBackend(key_file=key_file)
        path = tmp_path / "kf.json"
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, backend)
        with codec.load(path, PortableSymmetricBackend(key_file=key_file)) as cred:
            assert cred.secret.reveal_text() == "p@ss1"

    def test_readable_on_any_platform_with_same_key(self, codec, stored, machine_a, monkeypatch):
        # Native availability must not matter to a portable record
        from credential_vault.vault import dpapi

        monkeypatch.setattr(dpapi, "is_available", lambda: True)
        with codec.load(stored, PortableSymmetricBackend(environ=dict(machine_a))) as cred:
            assert cred.identifier == "svc-user"


class TestPortableRejection:

    def test_other_machine_fails(self, codec, portable_b, stored):
        with pytest.raises(DecryptionFailed):
            codec.load(stored, portable_b)

    def test_other_key_file_fails(self, codec, tmp_path):
        backend = PortableSymmetricBackend(key_file=write_key_file(tmp_path / "a.key"))
        other = PortableSymmetricBackend(key_file=write_key_file(tmp_path / "b.key"))
        path = tmp_path / "c.json"
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, backend)
        with pytest.raises(DecryptionFailed):
            codec.load(path, other)

    @pytest.mark.parametrize("field", ["ciphertext", "tag", "nonce"])
    @pytest.mark.parametrize("bit", [0, 7])
    def test_bit_flip_detected(self, codec, portable_a, stored, field, bit):
        data = _read(stored)
        data[field] = _flip_bit(data[field], index=0, bit=bit)
        _write(stored, data)
        with pytest.raises(DecryptionFailed):
            codec.load(stored, portable_a)

    def test_last_tag_byte_flip_detected(self, codec, portable_a, stored):
        data = _read(stored)
        data["tag"] = _flip_bit(data["tag"], index=TAG_LENGTH - 1)
        _write(stored, data)
        with pytest.raises(DecryptionFailed):
            codec.load(stored, portable_a)

    def test_identifier_swap_detected(self, codec, portable_a, stored):
        data = _read(stored)
        data["identifier"] = "admin"
        _write(stored, data)
        with pytest.raises(DecryptionFailed):
            codec.load(stored, portable_a)

    def test_truncated_nonce_detected(self, codec, portable_a, stored):
        data = _read(stored)
        data["nonce"] = base64.b64encode(b"\x00" * (NONCE_LENGTH - 1)).decode()
        _write(stored, data)
        with pytest.raises(DecryptionFailed):
            codec.load(stored, portable_a)

    def test_invalid_base64_is_decryption_failure(self, codec, portable_a, stored):
        data = _read(stored)
        data["ciphertext"] = "!!not base64!!"
        _write(stored, data)
        with pytest.raises(DecryptionFailed):
            codec.load(stored, portable_a)

    def test_error_message_does_not_leak_cause(self, codec, portable_a, portable_b, stored):
        with pytest.raises(DecryptionFailed) as wrong_key:
            codec.load(stored, portable_b)

        data = _read(stored)
        data["tag"] = _flip_bit(data["tag"])
        _write(stored, data)
        with pytest.raises(DecryptionFailed) as tampered:
            codec.load(stored, portable_a)

        assert str(wrong_key.value) == str(tampered.value)
        assert wrong_key.value.__cause__ is None
        assert tampered.value.__cause__ is None

    def test_bad_key_file_surfaces(self, codec, stored, tmp_path):
        key_file = tmp_path / "short.key"
        key_file.write_bytes(b"\x00" * 8)
        with pytest.raises(KeyFileWrongLength):
            codec.load(stored, PortableSymmetricBackend(key_file=key_file))


# ── Format Version / Record Shape ────────────────────────────────────


class TestRecordValidation:

    def test_newer_format_version_rejected_before_decrypt(self, codec, stored, monkeypatch):
        data = _read(stored)
        data["format_version"] = FORMAT_VERSION + 1
        _write(stored, data)

        backend = PortableSymmetricBackend(environ={"USERNAME": "u", "COMPUTERNAME": "m"})

        def fail_open(record):
            raise AssertionError("decryption attempted")

        monkeypatch.setattr(backend, "open", fail_open)
        monkeypatch.setattr(backend, "acquire_key", lambda: pytest.fail("key acquired"))
        with pytest.raises(UnsupportedFormatVersion) as exc_info:
            codec.load(stored, backend)
        assert exc_info.value.found == FORMAT_VERSION + 1
        assert exc_info.value.supported == FORMAT_VERSION

    def test_newer_version_with_unknown_layout_still_version_error(self, codec, portable_a, tmp_path):
        path = tmp_path / "future.json"
        _write(path, {"format_version": 7, "backend": "quantum", "identifier": "x", "blob": "??"})
        with pytest.raises(UnsupportedFormatVersion):
            codec.load(path, portable_a)

    @pytest.mark.parametrize("data", [
        {"format_version": 2},
        {"format_version": 2, "backend": "portable_symmetric", "id": "renamed"},
    ])
    def test_newer_version_without_v1_header(self, codec, portable_a, tmp_path, data):
        path = tmp_path / "future.json"
        _write(path, data)
        with pytest.raises(UnsupportedFormatVersion) as exc_info:
            codec.load(path, portable_a)
        assert exc_info.value.found == 2
        with pytest.raises(UnsupportedFormatVersion):
            codec.inspect(path)

    def test_missing_file(self, codec, portable_a, tmp_path):
        with pytest.raises(RecordUnreadable):
            codec.load(tmp_path / "missing.json", portable_a)

    def test_not_json(self, codec, portable_a, tmp_path):
        path = tmp_path / "junk.json"
        path.write_text("{ nope", encoding="utf-8")
        with pytest.raises(RecordUnreadable):
            codec.load(path, portable_a)

    @pytest.mark.parametrize("version", [0, -1, "1", None, True])
    def test_invalid_format_version(self, codec, portable_a, stored, version):
        data = _read(stored)
        data["format_version"] = version
        _write(stored, data)
        with pytest.raises(RecordUnreadable):
            codec.load(stored, portable_a)

    def test_missing_payload_field(self, codec, portable_a, stored):
        data = _read(stored)
        del data["tag"]
        _write(stored, data)
        with pytest.raises(RecordUnreadable):
            codec.load(stored, portable_a)

    def test_json_array_rejected(self, codec, portable_a, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        with pytest.raises(RecordUnreadable):
            codec.load(path, portable_a)

    def test_inspect_reads_header_only(self, codec, stored):
        info = codec.inspect(stored)
        assert info.identifier == "svc-user"
        assert info.backend == "portable_symmetric"
        assert info.format_version == 1


# ── Native Protection ────────────────────────────────────────────────


class TestNativeBackend:

    def test_round_trip(self, codec, fake_dpapi, tmp_path):
        path = tmp_path / "native.json"
        backend = NativeProtectionBackend()
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, backend)
        assert fake_dpapi.protect_calls == 1
        with codec.load(path, backend) as cred:
            assert cred == Credential.from_plaintext("svc-user", "p@ss1")

    def test_record_layout(self, codec, fake_dpapi, tmp_path):
        path = tmp_path / "native.json"
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, NativeProtectionBackend())
        data = _read(path)
        assert data["backend"] == "native_protection"
        assert data["format_version"] == 1
        assert data["identifier"] == "svc-user"
        assert "protected_blob" in data
        assert "nonce" not in data

    def test_other_user_fails(self, codec, fake_dpapi, tmp_path):
        path = tmp_path / "native.json"
        backend = NativeProtectionBackend()
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, backend)
        fake_dpapi.owner = "someone@elsewhere"
        with pytest.raises(DecryptionFailed):
            codec.load(path, backend)

    def test_identifier_swap_detected(self, codec, fake_dpapi, tmp_path):
        path = tmp_path / "native.json"
        backend = NativeProtectionBackend()
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, backend)
        data = _read(path)
        data["identifier"] = "admin"
        _write(path, data)
        with pytest.raises(DecryptionFailed):
            codec.load(path, backend)

    def test_protect_failure_is_encryption_failed(self, codec, fake_dpapi, monkeypatch, tmp_path):
        from credential_vault.vault import dpapi

        def broken(data, **kwargs):
            raise OSError("CryptProtectData failed")

        monkeypatch.setattr(dpapi, "protect", broken)
        path = tmp_path / "native.json"
        with pytest.raises(EncryptionFailed):
            codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, NativeProtectionBackend())
        assert not path.exists()

    def test_unavailable_platform(self, codec, no_native, tmp_path):
        with pytest.raises(UnsupportedBackend):
            codec.store(
                Credential.from_plaintext("svc-user", "p@ss1"),
                tmp_path / "n.json",
                NativeProtectionBackend(),
            )

    @pytest.mark.skipif(sys.platform == "win32", reason="exercises the non-Windows guard")
    def test_real_dpapi_refuses_off_windows(self):
        from credential_vault.vault import dpapi

        assert dpapi.is_available() is False
        with pytest.raises(OSError):
            dpapi.protect(b"x")
        with pytest.raises(OSError):
            dpapi.unprotect(b"x")

    def test_seal_passes_buffer_not_bytes_copy(self, codec, fake_dpapi, monkeypatch, tmp_path):
        from credential_vault.vault import dpapi
        from credential_vault.vault.secure_buffer import SecretBuffer

        seen = []

        def recording_protect(data, **kwargs):
            seen.append(type(data))
            return fake_dpapi.protect(data, **kwargs)

        monkeypatch.setattr(dpapi, "protect", recording_protect)
        monkeypatch.setattr(SecretBuffer, "reveal", lambda self: pytest.fail("secret copied to bytes"))
        path = tmp_path / "native.json"
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, NativeProtectionBackend())
        assert seen == [memoryview]

    def test_blob_built_from_read_only_view(self):
        from credential_vault.vault import dpapi

        data = bytearray(b"p@ss1")
        blob, buf = dpapi._to_blob(memoryview(data).toreadonly())
        assert blob.cbData == len(data)
        assert ctypes.string_at(blob.pbData, blob.cbData) == b"p@ss1"
        ctypes.memset(buf, 0, ctypes.sizeof(buf))
        assert data == bytearray(b"p@ss1")


class TestBackendTag:

    def test_native_record_with_portable_backend(self, codec, fake_dpapi, portable_a, tmp_path):
        path = tmp_path / "native.json"
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, NativeProtectionBackend())
        with pytest.raises(BackendMismatch) as exc_info:
            codec.load(path, portable_a)
        assert exc_info.value.record_backend == "native_protection"
        assert exc_info.value.requested_backend == "portable_symmetric"

    def test_portable_record_with_native_backend(self, codec, fake_dpapi, stored):
        with pytest.raises(BackendMismatch):
            codec.load(stored, NativeProtectionBackend())


# ── Atomic Writes ────────────────────────────────────────────────────


class TestAtomicWrite:

    def test_replaces_existing_record(self, codec, portable_a, stored):
        codec.store(Credential.from_plaintext("svc-user", "n3w"), stored, portable_a)
        with codec.load(stored, portable_a) as cred:
            assert cred.secret.reveal_text() == "n3w"

    def test_no_temp_files_left(self, codec, portable_a, stored):
        assert [p.name for p in stored.parent.iterdir()] == ["cred.json"]

    @pytest.mark.parametrize("code", [errno.ENOSPC, errno.EIO, errno.EXDEV])
    def test_any_write_error_is_typed(self, codec, portable_a, stored, monkeypatch, code):
        original = stored.read_text(encoding="utf-8")

        def broken_fsync(fd):
            raise OSError(code, os.strerror(code))

        monkeypatch.setattr(os, "fsync", broken_fsync)
        with pytest.raises(PathUnwritable) as exc_info:
            codec.store(Credential.from_plaintext("svc-user", "new"), stored, portable_a)
        assert exc_info.value.__cause__.errno == code
        assert stored.read_text(encoding="utf-8") == original
        assert [p.name for p in stored.parent.iterdir()] == ["cred.json"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_record_is_owner_only(self, stored):
        assert stat.S_IMODE(stored.stat().st_mode) == 0o600

    def test_missing_directory(self, codec, portable_a, tmp_path):
        with pytest.raises(PathUnwritable):
            codec.store(
                Credential.from_plaintext("svc-user", "p@ss1"),
                tmp_path / "nope" / "cred.json",
                portable_a,
            )

    def test_parent_is_a_file(self, codec, portable_a, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(PathUnwritable):
            codec.store(Credential.from_plaintext("a", "b"), blocker / "cred.json", portable_a)

    def test_destination_is_a_directory(self, codec, portable_a, tmp_path):
        target = tmp_path / "dir"
        target.mkdir()
        with pytest.raises(PathUnwritable):
            codec.store(Credential.from_plaintext("a", "b"), target, portable_a)
        assert [p.name for p in tmp_path.iterdir()] == ["dir"]

    @pytest.mark.skipif(
        sys.platform == "win32" or (hasattr(os, "geteuid") and os.geteuid() == 0),
        reason="needs POSIX permissions enforced for a non-root user",
    )
    def test_read_only_directory(self, codec, portable_a, tmp_path):
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            with pytest.raises(PathUnwritable):
                codec.store(Credential.from_plaintext("a", "b"), locked / "c.json", portable_a)
        finally:
            locked.chmod(0o700)

    def test_failed_replace_keeps_old_record(self, portable_a, stored, monkeypatch):
        original = stored.read_text(encoding="utf-8")

        def broken_replace(src, dst):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(os, "replace", broken_replace)
        with pytest.raises(PathUnwritable):
            atomic_write_text(stored, "partial")
        assert stored.read_text(encoding="utf-8") == original
        assert [p.name for p in stored.parent.iterdir()] == ["cred.json"]

    def test_encryption_failure_writes_nothing(self, codec, tmp_path, monkeypatch):
        backend = PortableSymmetricBackend(environ={"USERNAME": "u", "COMPUTERNAME": "m"})

        def broken_seal(identifier, secret):
            raise EncryptionFailed("cipher error")

        monkeypatch.setattr(backend, "seal", broken_seal)
        with pytest.raises(EncryptionFailed):
            codec.store(Credential.from_plaintext("a", "b"), tmp_path / "c.json", backend)
        assert list(tmp_path.iterdir()) == []
