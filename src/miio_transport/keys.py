"""Token handling and key derivation for the miIO transport."""

from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes

from .types import TOKEN_SIZE, TOKEN_HEX_LENGTH, InvalidTokenError


@dataclass(frozen=True)
class DeviceKeys:
    """AES key and IV derived from a device token."""
    key: bytes  # 16 bytes
    iv: bytes  # 16 bytes


def md5_digest(*parts: bytes) -> bytes:
    """Return the MD5 digest of the concatenated parts."""
    digest = hashes.Hash(hashes.MD5())
    for part in parts:
        digest.update(part)
    return digest.finalize()


def decode_token(token_hex: str) -> bytes:
    """
    Decode a token from its 32-character hex representation.

    Args:
        token_hex: Token as hex string (e.g. "a0b1c2d3e4f5a0b1c2d3e4f5a0b1c2d3")

    Returns:
        16 raw token bytes

    Raises:
        InvalidTokenError: If the string is not 32 hex characters
    """
    if not isinstance(token_hex, str):
        raise InvalidTokenError(f"Token must be a hex string, got {type(token_hex).__name__}")

    if len(token_hex) != TOKEN_HEX_LENGTH:
        raise InvalidTokenError(
            f"Token must be {TOKEN_HEX_LENGTH} hex characters, got {len(token_hex)}"
        )

    try:
        token = bytes.fromhex(token_hex)
    except ValueError as e:
        raise InvalidTokenError(f"Token is not valid hex: {e}") from e

    # bytes.fromhex skips whitespace, so the decoded length can still be short
    if len(token) != TOKEN_SIZE:
        raise InvalidTokenError(f"Expected {TOKEN_SIZE} bytes token, got {len(token)}")

    return token


def derive_device_keys(token: bytes) -> DeviceKeys:
    """
    Derive the AES-128 key and IV from a 16-byte token.

    key = MD5(token), iv = MD5(key || token)

    Args:
        token: 16-byte device token

    Returns:
        DeviceKeys holding key and iv

    Raises:
        InvalidTokenError: If the token is not 16 bytes
    """
    if len(token) != TOKEN_SIZE:
        raise InvalidTokenError(f"Expected {TOKEN_SIZE} bytes token, got {len(token)}")

    key = md5_digest(token)
    iv = md5_digest(key, token)
    return DeviceKeys(key=key, iv=iv)
