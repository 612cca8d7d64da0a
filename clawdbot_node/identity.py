"""Device identity and session-token storage.

The node proves who it is with a long-lived P-256 keypair.  The device id is
the SHA-256 fingerprint of the raw public key, so it is stable for as long as
the key file survives.  The private key lives in ``<state_dir>/device_key.pem``
(mode 0600); the gateway-issued session token lives beside it in
``device_token.json``.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .protocol import AUTH_PAYLOAD_VERSION

logger = logging.getLogger(__name__)

KEY_FILENAME = "device_key.pem"
TOKEN_FILENAME = "device_token.json"


def build_auth_payload(
    device_id: str,
    client_id: str,
    client_mode: str,
    role: str,
    scopes: list[str],
    signed_at_ms: int,
    token: Optional[str],
    nonce: str,
) -> str:
    """Build the exact string the gateway verifies.

    Format: ``v2|deviceId|clientId|clientMode|role|scopes|signedAtMs|token|nonce``
    """
    return "|".join([
        AUTH_PAYLOAD_VERSION,
        device_id,
        client_id,
        client_mode,
        role,
        ",".join(scopes),
        str(signed_at_ms),
        token or "",
        nonce,
    ])


def _raw_public_bytes(public_key: ec.EllipticCurvePublicKey) -> bytes:
    # X9.62 uncompressed point minus the 0x04 prefix: x || y
    point = public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    return point[1:]


def verify_signature(payload: str, signature_b64: str, public_key_b64: str) -> bool:
    """Check a signature the way the gateway does."""
    try:
        raw = base64.b64decode(public_key_b64)
        public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), b"\x04" + raw)
        public_key.verify(
            base64.b64decode(signature_b64),
            payload.encode("utf-8"),
            ec.ECDSA(hashes.SHA256()),
        )
    except (InvalidSignature, ValueError):
        return False
    return True


class DeviceIdentity:
    """Signing keypair plus the identifiers derived from it."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        self._private_key = private_key
        self._public_raw = _raw_public_bytes(private_key.public_key())

    @classmethod
    def generate(cls) -> DeviceIdentity:
        return cls(ec.generate_private_key(ec.SECP256R1()))

    @classmethod
    def load_or_create(
        cls, state_dir: str | Path, token_store: Optional[TokenStore] = None
    ) -> DeviceIdentity:
        """Load the persisted key, creating (and persisting) one if needed.

        A freshly created key makes any stored session token worthless, so
        the token store is cleared in that case.
        """
        path = Path(state_dir) / KEY_FILENAME
        if path.exists():
            try:
                key = serialization.load_pem_private_key(path.read_bytes(), password=None)
                if isinstance(key, ec.EllipticCurvePrivateKey):
                    identity = cls(key)
                    logger.info("Loaded existing device identity: %s...", identity.device_id[:16])
                    return identity
                logger.error("Key at %s is not an EC private key", path)
            except (ValueError, TypeError):
                logger.exception("Failed to load private key from %s", path)

        identity = cls.generate()
        identity.save(path)
        if token_store is not None:
            token_store.clear()
        logger.info("Created new device identity: %s...", identity.device_id[:16])
        return identity

    @classmethod
    def regenerate(cls, state_dir: str | Path, token_store: Optional[TokenStore] = None) -> DeviceIdentity:
        """Replace the keypair; the old session token is discarded."""
        identity = cls.generate()
        identity.save(Path(state_dir) / KEY_FILENAME)
        if token_store is not None:
            token_store.clear()
        logger.warning("Regenerated device identity: %s...", identity.device_id[:16])
        return identity

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pem = self._private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(pem)
        os.chmod(path, 0o600)

    @property
    def device_id(self) -> str:
        return hashlib.sha256(self._public_raw).hexdigest()

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self._public_raw).decode("ascii")

    def sign(self, payload: str) -> str:
        """Sign *payload*; returns a base64 DER-encoded ECDSA signature."""
        signature = self._private_key.sign(payload.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
        return base64.b64encode(signature).decode("ascii")


class TokenStore:
    """Persists the gateway-issued session token."""

    def __init__(self, state_dir: str | Path):
        self.path = Path(state_dir) / TOKEN_FILENAME

    @property
    def token(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError):
            logger.warning("Unreadable token file %s, ignoring", self.path)
            return None
        token = data.get("deviceToken") if isinstance(data, dict) else None
        return token if isinstance(token, str) and token else None

    @token.setter
    def token(self, value: Optional[str]) -> None:
        if not value:
            self.clear()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump({"deviceToken": value}, f)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
