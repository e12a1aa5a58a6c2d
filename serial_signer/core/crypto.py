from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from typing import Final

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .errors import ProtocolError, SecureSessionError

_LOGGER = logging.getLogger(__name__)

# The signer firmware uses the bitcoin curve
CURVE: Final = ec.SECP256K1()
CURVE_ORDER: Final = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16
)
PUBLIC_KEY_SIZE: Final = 65  # Uncompressed: 0x04 + 32 bytes X + 32 bytes Y
PRIVATE_KEY_SIZE: Final = 32  # raw bytes
SHARED_SECRET_SIZE: Final = 32
UNCOMPRESSED_PREFIX: Final = "04"

BLOCK_SIZE: Final = 16
IV_SIZE: Final = 16
PADDING_CHAR: Final = b" "


def load_private_key(private_key_bytes: bytes) -> ec.EllipticCurvePrivateKey:
    """Load a secp256k1 private key from raw bytes.

    Args:
        private_key_bytes: The 32-byte private scalar.

    Returns:
        The private key object.
    """
    if len(private_key_bytes) != PRIVATE_KEY_SIZE:
        raise ValueError(f"Invalid private key size: {len(private_key_bytes)}")

    private_value = int.from_bytes(private_key_bytes, "big")
    if not 0 < private_value < CURVE_ORDER:
        raise ValueError("Private scalar out of range")

    return ec.derive_private_key(private_value, CURVE)


def generate_key_pair(
    random_bytes: Callable[[int], bytes] = secrets.token_bytes,
) -> tuple[ec.EllipticCurvePrivateKey, bytes]:
    """Generate a new ephemeral secp256k1 key pair.

    Args:
        random_bytes: Source of randomness for the private scalar.

    Returns:
        A tuple containing the private key object and the uncompressed public key bytes.
    """
    while True:
        try:
            private_key = load_private_key(random_bytes(PRIVATE_KEY_SIZE))
        except ValueError:
            # Scalar was zero or above the curve order, draw again
            continue
        return private_key, get_public_key_bytes(private_key)


def get_public_key_bytes(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Get the 65-byte uncompressed public key from a private key."""
    return private_key.public_key().public_bytes(
        encoding=Encoding.X962, format=PublicFormat.UncompressedPoint
    )


def public_key_to_hex(public_key_bytes: bytes) -> str:
    """Encode an uncompressed public key for the handshake line.

    The leading 0x04 format byte is dropped, leaving the 128 hex characters of
    the X and Y coordinates.
    """
    if len(public_key_bytes) != PUBLIC_KEY_SIZE:
        raise ValueError(f"Invalid public key size: {len(public_key_bytes)}")
    return public_key_bytes[1:].hex()


def public_key_from_hex(public_key_hex: str) -> bytes:
    """Rebuild an uncompressed public key from a handshake line value.

    Args:
        public_key_hex: X and Y coordinates as hex, without the 04 prefix.

    Returns:
        The 65-byte uncompressed public key.
    """
    try:
        public_key_bytes = bytes.fromhex(UNCOMPRESSED_PREFIX + public_key_hex)
    except ValueError as err:
        raise ProtocolError(f"Public key is not valid hex: {err}") from err

    if len(public_key_bytes) != PUBLIC_KEY_SIZE:
        raise ProtocolError(f"Invalid public key size: {len(public_key_bytes)}")
    return public_key_bytes


def compute_shared_secret(
    private_key: ec.EllipticCurvePrivateKey, peer_public_key_bytes: bytes
) -> bytes:
    """Compute the ECDH shared secret.

    Args:
        private_key: The local private key.
        peer_public_key_bytes: The peer's uncompressed public key.

    Returns:
        The 32-byte X coordinate of the shared point.
    """
    _LOGGER.debug(
        "Computing shared secret with peer public key: %s", peer_public_key_bytes.hex()
    )
    try:
        peer_public_key = ec.EllipticCurvePublicKey.from_encoded_point(
            CURVE, peer_public_key_bytes
        )
    except ValueError as err:
        raise ProtocolError(f"Invalid peer public key: {err}") from err

    return private_key.exchange(ec.ECDH(), peer_public_key)


def _check_key(key: bytes | bytearray | None) -> bytes:
    if not key:
        raise SecureSessionError()
    if len(key) != SHARED_SECRET_SIZE:
        raise ProtocolError(f"Invalid shared secret size: {len(key)}")
    return bytes(key)


def aes_cbc_encrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """Encrypt block-aligned data using AES-CBC.

    Args:
        key: 32-byte AES key.
        iv: 16-byte initialization vector.
        data: Plaintext, already padded to the block size.

    Returns:
        The ciphertext.
    """
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def aes_cbc_decrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """Decrypt AES-CBC ciphertext without removing any padding."""
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    return decryptor.update(data) + decryptor.finalize()


def encode_message(key: bytes | bytearray | None, message: str, iv: bytes) -> bytes:
    """Encrypt a command message for the device.

    The message is prefixed with its byte length and a space, then padded with
    trailing spaces to the AES block size. Space padding is not self-delimiting,
    so the receiver relies on the length prefix to recover the message.

    Args:
        key: The 32-byte shared secret.
        message: The command message, e.g. ``"XPUB Mainnet m/84'/0'/0'"``.
        iv: A fresh 16-byte initialization vector.

    Returns:
        The raw ciphertext bytes.
    """
    aes_key = _check_key(key)
    if len(iv) != IV_SIZE:
        raise ValueError(f"Invalid IV size: {len(iv)}")

    payload = message.encode("utf-8")
    data = str(len(payload)).encode("ascii") + b" " + payload
    remainder = len(data) % BLOCK_SIZE
    if remainder:
        data += PADDING_CHAR * (BLOCK_SIZE - remainder)

    return aes_cbc_encrypt(aes_key, iv, data)


def decode_message(key: bytes | bytearray | None, ciphertext: bytes, iv: bytes) -> str:
    """Decrypt a message from the device and strip its length prefix and padding.

    Args:
        key: The 32-byte shared secret.
        ciphertext: The raw ciphertext bytes.
        iv: The 16-byte initialization vector sent with the frame.

    Returns:
        Exactly the message that was encoded, without padding.
    """
    aes_key = _check_key(key)
    if len(iv) != IV_SIZE:
        raise ProtocolError(f"Invalid IV size: {len(iv)}")

    try:
        data = aes_cbc_decrypt(aes_key, iv, ciphertext)
    except ValueError as err:
        raise ProtocolError(f"Decryption failed: {err}") from err

    length_token, separator, rest = data.partition(b" ")
    if not separator or not length_token.isdigit():
        raise ProtocolError("Decrypted data has no length prefix")

    length = int(length_token)
    if length > len(rest):
        raise ProtocolError(
            f"Decrypted data is truncated: expected {length} bytes, got {len(rest)}"
        )

    try:
        return rest[:length].decode("utf-8")
    except UnicodeDecodeError as err:
        raise ProtocolError(f"Decrypted data is not valid UTF-8: {err}") from err
