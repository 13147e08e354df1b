"""Field-level encryption for monetary amounts.

Amounts are quantized to two decimal places, rendered as text and ciphered.
Two schemes are available behind the same ``Codec`` interface:

* ``FixedIvAesCodec``: AES-256-CBC with an IV derived from the key. Equal
  amounts produce equal ciphertext. This is the storage format of existing
  rows.
* ``FernetCodec``: Fernet tokens with a random IV per value.

``decode`` never raises. A value that fails to decrypt is read as plaintext
(older rows were written unencrypted) and, failing that, as zero. Both cases
are logged because a zero here hides data corruption behind a legitimate
looking balance.
"""

import base64
import hashlib
import logging
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .config import Settings


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class Codec(ABC):
    def encode(self, value: Decimal) -> str:
        return self.encrypt(f"{quantize(value):.2f}")

    def decode(self, text: str | None) -> Decimal:
        if not text:
            return ZERO
        try:
            plain = self.decrypt(text)
        except Exception as exc:
            logger.warning(f"Amount decryption failed ({type(exc).__name__}); reading stored value as plaintext")
            plain = text
        try:
            amount = Decimal(plain.strip())
            if amount.is_finite():
                return quantize(amount)
        except (InvalidOperation, ValueError):
            pass
        logger.warning("Stored amount is neither valid ciphertext nor a number; falling back to 0.00")
        return ZERO

    @abstractmethod
    def encrypt(self, plain: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def decrypt(self, token: str) -> str:
        raise NotImplementedError


class FixedIvAesCodec(Codec):
    def __init__(self, secret: str):
        key = secret.encode("utf-8")[:32].ljust(32, b"\0")
        self._key = key
        self._iv = hashlib.sha256(key).digest()[:16]

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, plain: str) -> str:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(plain.encode("utf-8")) + padder.finalize()
        encryptor = self._cipher().encryptor()
        raw = encryptor.update(data) + encryptor.finalize()
        return base64.b64encode(raw).decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = base64.b64decode(token, validate=True)
        decryptor = self._cipher().decryptor()
        data = decryptor.update(raw) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")


class FernetCodec(Codec):
    def __init__(self, secret: str):
        self._fernet = Fernet(self._derive_key(secret))

    @staticmethod
    def _derive_key(secret: str) -> bytes:
        try:
            key = secret.encode("utf-8")
            Fernet(key)
            return key
        except ValueError:
            return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())

    def encrypt(self, plain: str) -> str:
        return self._fernet.encrypt(plain.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc


CODECS = {
    "aes-fixed-iv": FixedIvAesCodec,
    "fernet": FernetCodec,
}


def build_codec(config: Settings) -> Codec:
    try:
        codec_cls = CODECS[config.codec]
    except KeyError as exc:
        raise ValueError(f"Unknown FEES_CODEC '{config.codec}'; expected one of {sorted(CODECS)}") from exc
    return codec_cls(config.cipher_secret)
