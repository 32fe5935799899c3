"""
Shared pytest fixtures for the Credential Vault test suite.

Autouse fixtures below isolate tests from the live environment:
  - Audit logger -> temp directory  (prevents test events in ./audit_logs)
  - Settings     -> fresh per test  (no CREDENTIAL_VAULT_* leakage)
  - DPAPI        -> opt-in fake     (native backend testable on any OS)
"""

import hashlib
import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_vault_state(tmp_path, monkeypatch):
    """Reset the audit logger, settings and default vault for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger()`` writes into the real ``./audit_logs/``
    directory, and settings cached by one test leak into the next.
    """
    import credential_vault.config as config_mod
    import credential_vault.core.audit_log as audit_mod
    import credential_vault.vault.vault_manager as manager_mod

    for name in list(os.environ):
        if name.startswith("CREDENTIAL_VAULT_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("CREDENTIAL_VAULT_AUDIT_DIR", str(tmp_path / "audit_logs"))

    audit_mod.reset_audit_logger()
    config_mod.reset_settings()
    manager_mod.reset_vault()

    yield

    audit_mod.reset_audit_logger()
    config_mod.reset_settings()
    manager_mod.reset_vault()


@pytest.fixture
def machine_a():
    """Environment of a simulated machine."""
    return {"USERNAME": "svc-user", "COMPUTERNAME": "host-a"}


@pytest.fixture
def machine_b():
    """Same user, different machine."""
    return {"USERNAME": "svc-user", "COMPUTERNAME": "host-b"}


class FakeDpapi:
    """Stand-in for Windows DPAPI bound to a simulated user.

    Blob layout: marker ‖ sha256(owner ‖ entropy) ‖ xor(data).  Unprotect
    fails with OSError for another owner, other entropy or a damaged blob,
    like CryptUnprotectData does.
    """

    MARKER = b"FAKEDPAPI"

    def __init__(self, owner="svc-user@host-a"):
        self.owner = owner
        self.protect_calls = 0

    def _binding(self, entropy):
        return hashlib.sha256(self.owner.encode() + b"\x00" + (entropy or b"")).digest()

    @staticmethod
    def _xor(data):
        return bytes(b ^ 0x5A for b in data)

    def protect(self, data, *, description="", entropy=None):
        self.protect_calls += 1
        return self.MARKER + self._binding(entropy) + self._xor(data)

    def unprotect(self, data, *, entropy=None):
        head = len(self.MARKER) + 32
        if not data.startswith(self.MARKER) or data[len(self.MARKER):head] != self._binding(entropy):
            raise OSError("CryptUnprotectData failed")
        return self._xor(data[head:])


@pytest.fixture
def fake_dpapi(monkeypatch):
    """Make native protection available, backed by FakeDpapi."""
    from credential_vault.vault import dpapi

    fake = FakeDpapi()
    monkeypatch.setattr(dpapi, "is_available", lambda: True)
    monkeypatch.setattr(dpapi, "protect", fake.protect)
    monkeypatch.setattr(dpapi, "unprotect", fake.unprotect)
    return fake


@pytest.fixture
def no_native(monkeypatch):
    """Force a platform without native protection."""
    from credential_vault.vault import dpapi

    monkeypatch.setattr(dpapi, "is_available", lambda: False)
