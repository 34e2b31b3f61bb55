"""Authenticated encryption of player secrets.

Envelopes use AES-256-GCM with a random 96-bit nonce per call. With random
nonces the collision probability stays below 2**-32 until roughly 2**32
encryptions under one key; a single process never gets close, so no nonce
counter is kept.
"""

import base64
import binascii
import logging
import os
from enum import Enum
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from gambit.errors import (
    TamperedOrWrongKey,
    UnsupportedFormatVersion,
    VaultConfigurationError,
)
from gambit.models import SecretEnvelope

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
FORMAT_VERSION = 1
_ASSOCIATED_DATA = {FORMAT_VERSION: b'gambit-secret-v1'}


class KeyMode(str, Enum):
    CONFIGURED = 'configured'
    EPHEMERAL = 'ephemeral'


def parse_master_key(raw: str) -> bytes:
    """Decode an operator supplied key: hex, base64 or a raw 32-byte string."""
    raw = raw.strip()
    if len(raw) == KEY_BYTES * 2:
        try:
            return bytes.fromhex(raw)
        except ValueError:
            pass
    for decode in (base64.b64decode, base64.urlsafe_b64decode):
        try:
            key = decode(raw.encode('ascii'))
        except (binascii.Error, ValueError, UnicodeEncodeError):
            continue
        if len(key) == KEY_BYTES:
            return key
    key = raw.encode('utf-8')
    if len(key) == KEY_BYTES:
        return key
    raise VaultConfigurationError(
        f"MASTER_KEY must decode to exactly {KEY_BYTES} bytes (hex, base64 or raw)"
    )


def generate_master_key() -> str:
    return base64.b64encode(AESGCM.generate_key(bit_length=KEY_BYTES * 8)).decode('ascii')


class SecretVault:

    def __init__(self, key: bytes, mode: KeyMode = KeyMode.CONFIGURED):
        if len(key) != KEY_BYTES:
            raise VaultConfigurationError(f"Vault key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)
        self.mode = mode

    @classmethod
    def from_config(cls, master_key: Optional[str], allow_ephemeral: bool = False) -> 'SecretVault':
        """Build the vault at process start.

        Without a configured key the vault falls back to a random in-memory
        key, but only when ``allow_ephemeral`` is set; production profiles
        leave it off and fail here instead.
        """
        if master_key:
            logger.info("[vault] using configured master key")
            return cls(parse_master_key(master_key), KeyMode.CONFIGURED)
        if not allow_ephemeral:
            raise VaultConfigurationError(
                "MASTER_KEY is not set and the ephemeral key fallback is disabled"
            )
        logger.warning(
            "[vault] !!! MASTER_KEY not set: running with an EPHEMERAL key. "
            "Submitted secrets become unrecoverable when this process restarts. "
            "Local development only !!!"
        )
        return cls(AESGCM.generate_key(bit_length=KEY_BYTES * 8), KeyMode.EPHEMERAL)

    @property
    def is_ephemeral(self) -> bool:
        return self.mode is KeyMode.EPHEMERAL

    def encrypt(self, plaintext: str) -> SecretEnvelope:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode('utf-8'), _ASSOCIATED_DATA[FORMAT_VERSION])
        return SecretEnvelope(
            ciphertext=sealed[:-TAG_BYTES],
            nonce=nonce,
            auth_tag=sealed[-TAG_BYTES:],
            format_version=FORMAT_VERSION,
        )

    def decrypt(self, envelope: SecretEnvelope) -> str:
        associated_data = _ASSOCIATED_DATA.get(envelope.format_version)
        if associated_data is None:
            raise UnsupportedFormatVersion(envelope.format_version)
        if len(envelope.nonce) != NONCE_BYTES or len(envelope.auth_tag) != TAG_BYTES:
            raise TamperedOrWrongKey()
        try:
            plaintext = self._aead.decrypt(
                envelope.nonce, envelope.ciphertext + envelope.auth_tag, associated_data
            )
        except InvalidTag:
            raise TamperedOrWrongKey() from None
        return plaintext.decode('utf-8')
