import base64
import binascii
import os
from typing import Optional, Tuple

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# ----- passphrase AES (OpenSSL "Salted__" format) -----
# Same layout CryptoJS.AES.encrypt(text, passphrase) produces:
#   base64("Salted__" || salt[8] || AES-256-CBC(PKCS7(plaintext)))
# with key and IV from EVP_BytesToKey(MD5, 1 round).
SALTED_HEADER = b"Salted__"
SALT_LEN = 8
KEY_LEN = 32
IV_LEN = 16
BLOCK_BITS = 128


def evp_bytes_to_key(passphrase: bytes, salt: bytes, key_len: int = KEY_LEN, iv_len: int = IV_LEN) -> Tuple[bytes, bytes]:
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        h = hashes.Hash(hashes.MD5())
        h.update(block + passphrase + salt)
        block = h.finalize()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def passphrase_encrypt(passphrase: str, plaintext: bytes, salt: Optional[bytes] = None) -> str:
    if salt is None:
        salt = os.urandom(SALT_LEN)
    key, iv = evp_bytes_to_key(passphrase.encode("utf-8"), salt)
    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    enc = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ct = enc.update(padded) + enc.finalize()
    return base64.b64encode(SALTED_HEADER + salt + ct).decode("ascii")


def passphrase_decrypt(passphrase: str, token: str) -> bytes:
    """
    Inverse of passphrase_encrypt. Raises ValueError for anything that is not a
    well-formed ciphertext under this passphrase (bad base64, missing header,
    truncated blocks, bad padding). CBC has no tag, so a wrong key can still
    occasionally yield valid padding over garbage.
    """
    try:
        raw = base64.b64decode(token.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("ciphertext is not valid base64") from e
    if not raw.startswith(SALTED_HEADER):
        raise ValueError("ciphertext is missing the salt header")
    salt = raw[len(SALTED_HEADER):len(SALTED_HEADER) + SALT_LEN]
    ct = raw[len(SALTED_HEADER) + SALT_LEN:]
    if len(salt) != SALT_LEN or not ct or len(ct) % (BLOCK_BITS // 8):
        raise ValueError("ciphertext is truncated")
    key, iv = evp_bytes_to_key(passphrase.encode("utf-8"), salt)
    dec = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = dec.update(ct) + dec.finalize()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    # raises ValueError("Invalid padding bytes.") on a wrong key or tampering
    return unpadder.update(padded) + unpadder.finalize()
