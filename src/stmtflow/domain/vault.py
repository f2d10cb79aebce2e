"""At-rest encryption for statement files."""

import base64
import binascii
import logging
import os
import secrets
import time
from typing import Callable, Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from stmtflow.domain.entities import KeyHandle
from stmtflow.domain.errors import DecryptionError, EncryptionError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12
KEY_LENGTH = 32
DEFAULT_KEY_ID = "default"

KeyProvider = Callable[[str], bytes]


def generate_key() -> str:
    """Return a new random 256-bit key, urlsafe base64 encoded."""
    return base64.urlsafe_b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


def decode_key(encoded: str) -> bytes:
    """Decode a base64 key and check its length.

    Raises:
        ValueError: If the value is not base64 or not 32 bytes long
    """
    try:
        key = base64.urlsafe_b64decode(encoded.strip().encode("ascii"))
    except (binascii.Error, UnicodeEncodeError):
        raise ValueError("Vault key is not valid base64")
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Vault key must be {KEY_LENGTH} bytes, got {len(key)}")
    return key


class EnvironmentKeyProvider:
    """Look up vault keys in environment variables.

    The default key id reads STMTFLOW_VAULT_KEY; any other id reads
    STMTFLOW_VAULT_KEY_<ID> (upper-cased). Keys are read on every call and
    never cached.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    def __call__(self, key_id: str) -> bytes:
        environ = os.environ if self._environ is None else self._environ
        if key_id == DEFAULT_KEY_ID:
            name = "STMTFLOW_VAULT_KEY"
        else:
            name = f"STMTFLOW_VAULT_KEY_{key_id.upper()}"
        encoded = environ.get(name)
        if not encoded:
            raise KeyError(f"No vault key configured for '{key_id}' (set {name})")
        return decode_key(encoded)


class Vault:
    """Seal and open statement bytes with AES-256-GCM.

    Every seal draws a fresh 96-bit nonce that is returned in the key
    handle and must be stored alongside the ciphertext. The key id is bound
    as associated data, so a ciphertext cannot be opened under another key
    id. Key material is fetched from the provider inside each call and is
    not kept on the instance.
    """

    def __init__(self, key_provider: Optional[KeyProvider] = None, key_id: str = DEFAULT_KEY_ID):
        """Initialize vault.

        Args:
            key_provider: Callable returning raw key bytes for a key id
            key_id: Key id used for new seals
        """
        self.key_provider = key_provider or EnvironmentKeyProvider()
        self.key_id = key_id

    def seal(self, data: bytes) -> tuple[bytes, KeyHandle]:
        """Encrypt bytes.

        Args:
            data: Plaintext statement bytes (may be empty)

        Returns:
            Tuple of (ciphertext, key handle)

        Raises:
            EncryptionError: If randomness or the key is unavailable
        """
        try:
            nonce = os.urandom(NONCE_LENGTH)
        except NotImplementedError as e:
            raise EncryptionError(f"Secure randomness unavailable: {e}") from e

        try:
            cipher = AESGCM(self._load_key(self.key_id))
        except (KeyError, ValueError) as e:
            raise EncryptionError(f"Cannot seal statement: {_reason(e)}") from e

        ciphertext = cipher.encrypt(nonce, bytes(data), self.key_id.encode("utf-8"))
        logger.debug("Sealed %d bytes with key '%s'", len(data), self.key_id)
        return ciphertext, KeyHandle(key_id=self.key_id, nonce=nonce)

    def open(self, ciphertext: bytes, handle: KeyHandle) -> bytes:
        """Decrypt bytes sealed by seal().

        Args:
            ciphertext: Sealed bytes
            handle: Key handle returned by seal()

        Returns:
            Original plaintext bytes

        Raises:
            DecryptionError: On key/nonce mismatch, corruption, or missing key
        """
        if len(handle.nonce) != NONCE_LENGTH:
            raise DecryptionError(
                f"Invalid nonce length {len(handle.nonce)}; expected {NONCE_LENGTH}"
            )
        try:
            cipher = AESGCM(self._load_key(handle.key_id))
        except (KeyError, ValueError) as e:
            raise DecryptionError(f"Cannot open statement: {_reason(e)}") from e

        try:
            plaintext = cipher.decrypt(handle.nonce, bytes(ciphertext), handle.key_id.encode("utf-8"))
        except InvalidTag as e:
            raise DecryptionError(
                "Statement could not be decrypted: key, nonce or ciphertext does not match"
            ) from e
        logger.debug("Opened %d bytes with key '%s'", len(plaintext), handle.key_id)
        return plaintext

    def _load_key(self, key_id: str) -> bytes:
        key = self.key_provider(key_id)
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Vault key must be {KEY_LENGTH} bytes, got {len(key)}")
        return key


def generate_secure_file_name(original_name: str) -> str:
    """Build a storage name that does not leak the uploaded file name.

    Format: ``<millis>-<16 hex chars>.<extension>.enc``
    """
    extension = original_name.rsplit(".", 1)[-1].lower() if "." in original_name else "bin"
    timestamp = int(time.time() * 1000)
    return f"{timestamp}-{secrets.token_hex(8)}.{extension}.enc"


def _reason(error: Exception) -> str:
    # KeyError wraps its message in quotes
    if isinstance(error, KeyError) and error.args:
        return str(error.args[0])
    return str(error)
