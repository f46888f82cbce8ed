import base64
import logging
import os
import re
import sys
from typing import NewType
from urllib.parse import urlparse

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

_RAISE_VALIDATION_ERRORS = "pytest" in sys.modules

logger = logging.getLogger("utils")


def _check_scheme(urlstring: str, schemes: tuple[str, ...]) -> None:
    try:
        scheme = urlparse(urlstring).scheme
        if not scheme or (schemes and scheme not in schemes):
            expected = "/".join(schemes) or "any"
            raise ValueError(f"Invalid {expected} URL: {urlstring}")
    except ValueError as e:
        if _RAISE_VALIDATION_ERRORS:
            raise e
        logger.error(e)


class URL(str):
    schemes: tuple[str, ...] = ()

    def __new__(cls, urlstring: str) -> "URL":
        _check_scheme(urlstring, cls.schemes)
        return str.__new__(cls, urlstring)


class HTTPURL(URL):
    schemes = ("http", "https")


_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")

_ENTITIES: list[tuple[str, str]] = [
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
]


def clean_html(html: str) -> str:
    """
    Reduce a feed's free-text field to plain text.

    Tags are dropped, a fixed set of named entities is unescaped and runs of
    whitespace collapse to a single space. Unknown entities are left as-is.
    """
    text = _TAG_RE.sub("", html)
    for entity, replacement in _ENTITIES:
        text = text.replace(entity, replacement)
    return _WHITESPACE_RE.sub(" ", text).strip()


# A key is base64 of an AES-256 key followed by a CBC IV.
EncryptionKey = NewType("EncryptionKey", str)
Ciphertext = NewType("Ciphertext", str)

_AES_KEY_SIZE = 32
_IV_SIZE = 16


def generate_encryption_key() -> EncryptionKey:
    return EncryptionKey(base64.b64encode(os.urandom(_AES_KEY_SIZE + _IV_SIZE)).decode())


def encrypt(key: EncryptionKey, plaintext: str) -> Ciphertext:
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode()) + padder.finalize()
    encryptor = _cipher(key).encryptor()
    cipherbytes = encryptor.update(padded) + encryptor.finalize()
    return Ciphertext(base64.b64encode(cipherbytes).decode())


def decrypt(key: EncryptionKey, ciphertext: Ciphertext) -> str:
    decryptor = _cipher(key).decryptor()
    padded = decryptor.update(base64.b64decode(ciphertext)) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(padded) + unpadder.finalize()).decode()


def _cipher(key: EncryptionKey) -> Cipher[modes.CBC]:
    key_data = base64.b64decode(key)
    assert len(key_data) == _AES_KEY_SIZE + _IV_SIZE, "malformed encryption key"
    return Cipher(
        algorithms.AES(key_data[:_AES_KEY_SIZE]),
        modes.CBC(key_data[_AES_KEY_SIZE:]),
    )
