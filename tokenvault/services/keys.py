"""Key pair lifecycle: find or create the active pair, look pairs up by kid, publish JWKS.

Concurrency policy: when no active pair exists, concurrent callers may each
generate and persist one. Every pair stays independently valid for
verification, so a duplicate costs one key generation and nothing else. No
lock or compare-and-set is taken on the active pair.
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from tokenvault.core.config import Settings
from tokenvault.models.key_pair import KeyPair
from tokenvault.services.domain import Clock, KeyMaterial, as_utc, utc_now
from tokenvault.services.errors import KeyGenerationError, KeyLoadError, UnknownKeyError
from tokenvault.services.key_store import KeyStore

logger = logging.getLogger(__name__)

# Parsed key objects by kid. Pairs are immutable once stored, and loading an
# encrypted PKCS8 key is slow, so parsing happens once per process. Existence
# is still checked against the store on every lookup.
_material_cache: dict[str, KeyMaterial] = {}
_material_lock = threading.Lock()


def _forget(kids: list[str]) -> None:
    with _material_lock:
        for kid in kids:
            _material_cache.pop(kid, None)


def clear_key_cache() -> None:
    """Drop every cached key object."""
    with _material_lock:
        _material_cache.clear()


class KeyPairManager:
    """Owns the key pair lifecycle. Never deletes a pair still needed for verification."""

    def __init__(self, store: KeyStore, settings: Settings, clock: Clock = utc_now):
        self.store = store
        self.settings = settings
        self.clock = clock

    def _passphrase(self) -> bytes | None:
        if self.settings.key_passphrase is None:
            return None
        return self.settings.key_passphrase.get_secret_value().encode("utf-8")

    def _generate(self, now: datetime) -> KeyPair:
        """Generate and serialize a fresh RSA pair. Raises KeyGenerationError."""
        passphrase = self._passphrase()
        encryption: serialization.KeySerializationEncryption = (
            serialization.BestAvailableEncryption(passphrase)
            if passphrase
            else serialization.NoEncryption()
        )
        try:
            private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=self.settings.rsa_key_size,
            )
            private_pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=encryption,
            )
            public_pem = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.exception("Key pair generation failed")
            raise KeyGenerationError(f"Key pair generation failed: {e}") from e

        return KeyPair(
            kid=uuid.uuid4().hex,
            public_key=public_pem.decode("ascii"),
            private_key=private_pem.decode("ascii"),
            created_at=now,
            expires_at=now + self.settings.key_pair_lifetime,
        )

    def _load(self, record: KeyPair) -> KeyMaterial:
        with _material_lock:
            cached = _material_cache.get(record.kid)
        if cached is not None:
            return cached

        try:
            private_key = serialization.load_pem_private_key(
                record.private_key.encode("ascii"),
                password=self._passphrase(),
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.error(f"Stored key pair {record.kid} could not be loaded: {e}")
            raise KeyLoadError(f"Key pair {record.kid} could not be loaded") from e

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise KeyLoadError(f"Key pair {record.kid} is not an RSA key")

        material = KeyMaterial(
            kid=record.kid,
            private_key=private_key,
            public_key=private_key.public_key(),
            created_at=as_utc(record.created_at),
            expires_at=as_utc(record.expires_at),
        )
        with _material_lock:
            _material_cache[record.kid] = material
        return material

    async def get_active_pair(self) -> KeyMaterial:
        """Return the current issuing pair, creating one if none is active."""
        now = self.clock()
        record = await self.store.find_active(now)
        if record is None:
            return await self.rotate()
        return self._load(record)

    async def rotate(self) -> KeyMaterial:
        """Create and persist a new active pair regardless of the existing ones."""
        now = self.clock()
        record = self._generate(now)
        await self.store.add(record)
        logger.info(f"Created key pair {record.kid} (active until {record.expires_at.isoformat()})")
        return self._load(record)

    async def get_pair_by_id(self, kid: str) -> KeyMaterial:
        """Look a pair up for verification. Fails closed with UnknownKeyError."""
        record = await self.store.find_by_kid(kid)
        if record is None:
            _forget([kid])
            raise UnknownKeyError(f"Key pair {kid} not found")
        return self._load(record)

    async def jwks(self) -> dict[str, Any]:
        """Public halves of every known pair, tagged by kid."""
        keys = []
        for record in await self.store.list_all():
            public_key = serialization.load_pem_public_key(record.public_key.encode("ascii"))
            jwk = RSAAlgorithm.to_jwk(public_key, as_dict=True)
            jwk["kid"] = record.kid
            keys.append(jwk)
        return {"keys": keys}

    async def prune_retired(self) -> int:
        """Delete pairs that no unexpired token can still reference."""
        cutoff = self.clock() - self.settings.key_verification_grace
        retired = [r.kid for r in await self.store.list_all() if as_utc(r.expires_at) < cutoff]
        if not retired:
            return 0
        removed = await self.store.delete_retired(cutoff)
        _forget(retired)
        logger.info(f"Removed {removed} retired key pairs")
        return removed
