"""Payload encryption and decryption for miIO frames."""

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .types import BLOCK_SIZE, DecryptionError


def encrypt_payload(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    """
    Encrypt a payload with AES-128-CBC and PKCS#7 padding.

    Args:
        key: 16-byte AES key
        iv: 16-byte initialization vector
        plaintext: Bytes to encrypt (may be empty)

    Returns:
        Ciphertext, a non-empty multiple of the block size
    """
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def decrypt_payload(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    """
    Decrypt an AES-128-CBC payload and strip its PKCS#7 padding.

    Args:
        key: 16-byte AES key
        iv: 16-byte initialization vector
        ciphertext: Encrypted bytes

    Returns:
        Recovered plaintext

    Raises:
        DecryptionError: If the ciphertext is misaligned or the padding is invalid
    """
    if not ciphertext or len(ciphertext) % BLOCK_SIZE != 0:
        raise DecryptionError(
            f"Ciphertext length {len(ciphertext)} is not a positive multiple of {BLOCK_SIZE}"
        )

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecryptionError(f"Invalid padding: {e}") from e
