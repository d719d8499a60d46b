"""
AES-GCM Encryption for ERP API Credentials

Encrypts the ERP API token at rest using AES-256-GCM. Each secret gets a
fresh random 16-byte IV and a 16-byte authentication tag; ciphertext, IV and
tag are stored as separate hex strings.

The master key is a 64-character hex value (32 bytes) supplied out-of-band
through the ERP_ENCRYPTION_KEY environment variable.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from .ports import ConfigurationError, CredentialIntegrityError


logger = logging.getLogger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32


@dataclass(frozen=True)
class EncryptedSecret:
    """Hex-encoded AES-GCM output as stored in erp_configuration."""
    ciphertext: str
    iv: str
    auth_tag: str


def load_master_key(master_key_hex: Optional[str] = None) -> bytes:
    """
    Decode and validate the vault master key.

    Args:
        master_key_hex: 64-character hex string. If None, reads ERP_ENCRYPTION_KEY.

    Returns:
        32-byte key

    Raises:
        ConfigurationError: If the key is missing, not hex, or not exactly 32 bytes
    """
    if master_key_hex is None:
        master_key_hex = os.environ.get("ERP_ENCRYPTION_KEY")

    if not master_key_hex:
        raise ConfigurationError(
            "ERP_ENCRYPTION_KEY environment variable is not set. "
            "Generate one with: openssl rand -hex 32"
        )

    try:
        key = bytes.fromhex(master_key_hex.strip())
    except ValueError as e:
        raise ConfigurationError(f"ERP_ENCRYPTION_KEY must be a valid hex string: {e}")

    if len(key) != KEY_LENGTH:
        raise ConfigurationError(
            f"ERP_ENCRYPTION_KEY must be {KEY_LENGTH} bytes (64 hex chars), got {len(key)} bytes"
        )
    return key


class CredentialVault:
    """
    Encrypts and decrypts ERP API tokens with AES-256-GCM.

    The vault never caches plaintext; callers decrypt just-in-time and drop
    the value when the operation ends.

    Usage:
        vault = CredentialVault()
        secret = vault.encrypt("my-api-token")
        token = vault.decrypt(secret.ciphertext, secret.iv, secret.auth_tag)
    """

    def __init__(self, master_key_hex: Optional[str] = None):
        self._key = load_master_key(master_key_hex)

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        """
        Encrypt a secret with a fresh random IV.

        Args:
            plaintext: Secret to encrypt

        Returns:
            EncryptedSecret with hex ciphertext, IV and auth tag
        """
        iv = os.urandom(IV_LENGTH)
        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(self._key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        logger.debug(f"Encrypted secret: {len(plaintext)} chars -> {len(ciphertext)} bytes")

        return EncryptedSecret(ciphertext=ciphertext.hex(), iv=iv.hex(), auth_tag=tag.hex())

    def decrypt(self, ciphertext: str, iv: str, auth_tag: str) -> str:
        """
        Decrypt and authenticate a secret.

        Args:
            ciphertext: Hex ciphertext
            iv: Hex IV (16 bytes)
            auth_tag: Hex authentication tag (16 bytes)

        Returns:
            Plaintext secret

        Raises:
            CredentialIntegrityError: Tag verification failed (tampered data or wrong key)
            ConfigurationError: Stored values are not valid hex or have wrong lengths
        """
        try:
            iv_bytes = bytes.fromhex(iv)
            tag_bytes = bytes.fromhex(auth_tag)
            ciphertext_bytes = bytes.fromhex(ciphertext)
        except ValueError as e:
            raise ConfigurationError(f"Stored credential is not valid hex: {e}")

        if len(iv_bytes) != IV_LENGTH or len(tag_bytes) != TAG_LENGTH:
            raise ConfigurationError(
                f"Stored credential has invalid IV/tag length "
                f"(iv={len(iv_bytes)}, tag={len(tag_bytes)})"
            )

        try:
            plaintext = AESGCM(self._key).decrypt(iv_bytes, ciphertext_bytes + tag_bytes, None)
        except InvalidTag:
            logger.error("Credential decryption failed: authentication tag verification failed")
            raise CredentialIntegrityError(
                "Decryption failed: credential has been tampered with or wrong encryption key"
            )

        return plaintext.decode("utf-8")


def mask_for_display(token: Optional[str]) -> str:
    """
    Redact a token for the admin UI: first 8 and last 4 characters.

    Display helper only. Short tokens are fully masked.

    Example:
        mask_for_display("4000123-4000456-ABCDEFGHIJKL")  # "4000123-...IJKL"
    """
    if not token or len(token) <= 12:
        return "****"
    return f"{token[:8]}...{token[-4:]}"
