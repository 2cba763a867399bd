"""
Credential Vault - tenant-scoped encrypted credential bundles.

Each tenant stores one bundle per agent type: a set of named secrets
(API keys), an enabled flag and free-form configuration. Secrets are
kept encrypted at rest and decrypted only when a bundle is read, so
decrypted values never outlive the agent instance that holds them.

This is a local implementation. In production, swap for a database-
or KMS-backed vault via the ICredentialVault interface.
"""

import base64
import hashlib
import logging
import os
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .interfaces import ICredentialVault
from .models import TenantCredentialBundle

logger = logging.getLogger(__name__)

NONCE_BYTES = 12

ChangeListener = Callable[[str, str], object]


@dataclass
class _EncryptedBundle:
    """A bundle as held at rest: every secret value is ciphertext."""
    tenant_id: str
    agent_type: str
    secrets: dict[str, str] = field(default_factory=dict)  # name -> b64(nonce + ciphertext)
    enabled: bool = True
    configuration: dict = field(default_factory=dict)


class LocalCredentialVault(ICredentialVault):
    """
    In-process vault with AES-GCM encryption of every secret value.

    The tenant id and agent type are bound as associated data, so a
    ciphertext copied into another tenant's bundle fails to decrypt.
    Thread-safe.
    """

    def __init__(self, encryption_key: str):
        # Derive a 256-bit key from whatever string the operator supplied
        self._aead = AESGCM(hashlib.sha256(encryption_key.encode()).digest())
        self._bundles: dict[tuple[str, str], _EncryptedBundle] = {}
        self._listeners: list[ChangeListener] = []
        self._lock = Lock()

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Call listener(tenant_id, agent_type) whenever a bundle changes."""
        self._listeners.append(listener)

    def put_credential_bundle(
        self,
        tenant_id: str,
        agent_type: str,
        secrets: dict[str, str],
        enabled: bool = True,
        configuration: Optional[dict] = None,
    ) -> None:
        """Store or replace a bundle, encrypting every secret value."""
        aad = self._aad(tenant_id, agent_type)
        encrypted = {
            name: self._encrypt(value, aad) for name, value in secrets.items()
        }
        with self._lock:
            self._bundles[(tenant_id, agent_type)] = _EncryptedBundle(
                tenant_id=tenant_id,
                agent_type=agent_type,
                secrets=encrypted,
                enabled=enabled,
                configuration=dict(configuration or {}),
            )
        logger.info(
            f"Stored credentials for tenant {tenant_id}, agent {agent_type} "
            f"(keys={sorted(secrets)}, enabled={enabled})"
        )
        self._notify(tenant_id, agent_type)

    def set_enabled(self, tenant_id: str, agent_type: str, enabled: bool) -> bool:
        """Toggle a bundle without touching its secrets. False if absent."""
        with self._lock:
            record = self._bundles.get((tenant_id, agent_type))
            if not record:
                return False
            record.enabled = enabled
        self._notify(tenant_id, agent_type)
        return True

    def delete_credential_bundle(self, tenant_id: str, agent_type: str) -> bool:
        with self._lock:
            removed = self._bundles.pop((tenant_id, agent_type), None)
        if removed:
            self._notify(tenant_id, agent_type)
        return removed is not None

    async def get_credential_bundle(
        self, tenant_id: str, agent_type: str
    ) -> Optional[TenantCredentialBundle]:
        with self._lock:
            record = self._bundles.get((tenant_id, agent_type))
            if not record:
                return None
            encrypted = dict(record.secrets)
            enabled = record.enabled
            configuration = dict(record.configuration)

        aad = self._aad(tenant_id, agent_type)
        try:
            secrets = {name: self._decrypt(blob, aad) for name, blob in encrypted.items()}
        except (InvalidTag, ValueError) as e:
            logger.error(f"Failed to decrypt credentials for tenant {tenant_id}, agent {agent_type}: {e!r}")
            raise ValueError("Failed to decrypt credential bundle") from e

        return TenantCredentialBundle(
            tenant_id=tenant_id,
            agent_type=agent_type,
            secrets=secrets,
            enabled=enabled,
            configuration=configuration,
        )

    def get_raw_secret(self, tenant_id: str, agent_type: str, name: str) -> Optional[str]:
        """The stored (encrypted) form of a secret. Used to verify nothing is kept in clear."""
        with self._lock:
            record = self._bundles.get((tenant_id, agent_type))
            return record.secrets.get(name) if record else None

    @staticmethod
    def _aad(tenant_id: str, agent_type: str) -> bytes:
        return f"{tenant_id}:{agent_type}".encode()

    def _encrypt(self, plaintext: str, aad: bytes) -> str:
        nonce = os.urandom(NONCE_BYTES)
        cipher_text = self._aead.encrypt(nonce, plaintext.encode(), aad)
        return base64.b64encode(nonce + cipher_text).decode()

    def _decrypt(self, blob: str, aad: bytes) -> str:
        raw = base64.b64decode(blob)
        nonce, cipher_text = raw[:NONCE_BYTES], raw[NONCE_BYTES:]
        return self._aead.decrypt(nonce, cipher_text, aad).decode()

    def _notify(self, tenant_id: str, agent_type: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(tenant_id, agent_type)
            except Exception as e:
                logger.error(f"Credential change listener failed for tenant {tenant_id}: {e}")
