"""Secret sealing boundary.

Plaintext secrets are encrypted with a libsodium sealed box against the
repository's public key before they are handed to the GitHub client. The
sender never holds a key pair, so nothing here can open a sealed value again.
"""

from __future__ import annotations

import binascii
from typing import TYPE_CHECKING

from nacl import encoding, exceptions, public

from .errors import InvalidRecipientKeyError

if TYPE_CHECKING:
    from .pipeline.models import ConfigSecret, SealedSecret


def seal(recipient_public_key: str, plaintext: str) -> str:
    """Encrypt `plaintext` for the holder of `recipient_public_key`.

    Args:
        recipient_public_key: Base64 encoded Curve25519 public key
        plaintext: Value to encrypt

    Returns:
        Base64 encoded sealed box
    """
    if not recipient_public_key or not recipient_public_key.strip():
        raise InvalidRecipientKeyError("Recipient public key is empty")

    try:
        key = public.PublicKey(recipient_public_key.strip().encode("utf-8"), encoding.Base64Encoder)
    except (exceptions.CryptoError, exceptions.TypeError, exceptions.ValueError, binascii.Error) as exc:
        raise InvalidRecipientKeyError(f"Recipient public key is malformed: {exc}") from exc

    sealed = public.SealedBox(key).encrypt(plaintext.encode("utf-8"))
    return encoding.Base64Encoder.encode(sealed).decode("ascii")


def seal_secret(secret: "ConfigSecret", public_key: str, key_id: str) -> "SealedSecret":
    from .pipeline.models import SealedSecret

    return SealedSecret(
        name=secret.name,
        ciphertext=seal(public_key, secret.plaintext_value),
        recipient_key_id=key_id,
    )
