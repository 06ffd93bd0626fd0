"""
Wallet key loading and transaction signing.

Private keys are accepted in the formats wallets commonly export:
    - base58 encoded 64-byte secret (Phantom, Solflare)
    - JSON byte array (solana-keygen id.json)
    - hex, with or without a 0x prefix
    - comma-separated bytes

Error messages never include key material.
"""
from __future__ import annotations

import json
import logging

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from fast_meme_trader.execution.errors import SigningError

logger = logging.getLogger(__name__)

SUPPORTED_KEY_FORMATS = (
    "base58 string, JSON byte array [1,2,...], hex string (optional 0x), "
    "comma-separated bytes"
)


class InvalidPrivateKeyError(ValueError):
    """The configured private key could not be parsed."""

    def __init__(self, length: int):
        self.length = length
        super().__init__(
            f"Could not parse private key of length {length}. "
            f"Supported formats: {SUPPORTED_KEY_FORMATS}"
        )


def _keypair_from_bytes(raw: bytes) -> Keypair:
    if len(raw) == 64:
        return Keypair.from_bytes(raw)
    if len(raw) == 32:
        return Keypair.from_seed(raw)
    raise ValueError(f"expected 32 or 64 bytes, got {len(raw)}")


def _decode(text: str) -> bytes:
    if text.startswith("["):
        values = json.loads(text)
        if not isinstance(values, list):
            raise ValueError("not a byte array")
        return bytes(values)

    if "," in text:
        return bytes(int(part.strip()) for part in text.split(",") if part.strip())

    hex_text = text[2:] if text.lower().startswith("0x") else text
    if len(hex_text) in (64, 128) and all(c in "0123456789abcdefABCDEF" for c in hex_text):
        return bytes.fromhex(hex_text)

    # A 64-byte secret key has the same base58 layout as a signature
    return bytes(Signature.from_string(text))


def parse_private_key(private_key: str) -> Keypair:
    """
    Parse a private key in any supported format.

    Raises:
        InvalidPrivateKeyError: If no format matches
    """
    text = private_key.strip()
    try:
        keypair = _keypair_from_bytes(_decode(text))
    except Exception:
        raise InvalidPrivateKeyError(len(text)) from None

    logger.debug(f"Loaded wallet {str(keypair.pubkey())[:8]}")
    return keypair


class KeypairSigner:
    """
    Signs venue-built transactions with the wallet keypair.

    The payload is deserialized, its message is rebuilt around the given
    recent blockhash, and the transaction is signed from scratch. Signing
    the same payload again with a newer blockhash is how broadcasts are
    retried.
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair
        self._public_key = str(keypair.pubkey())

    @property
    def public_key(self) -> str:
        return self._public_key

    def sign(self, unsigned_payload: bytes, anti_replay_token: str) -> bytes:
        """
        Sign a serialized transaction with a fresh blockhash.

        Raises:
            SigningError: On an unreadable payload, a bad blockhash or a
                message that needs signers we don't have
        """
        try:
            tx = VersionedTransaction.from_bytes(unsigned_payload)
            blockhash = Hash.from_string(anti_replay_token)
            message = self._with_blockhash(tx.message, blockhash)
            signed = VersionedTransaction(message, [self._keypair])
        except Exception as e:
            raise SigningError(f"Failed to sign transaction: {e}") from e
        return bytes(signed)

    @staticmethod
    def _with_blockhash(message, blockhash: Hash):
        if isinstance(message, MessageV0):
            return MessageV0(
                message.header,
                message.account_keys,
                blockhash,
                message.instructions,
                message.address_table_lookups,
            )
        header = message.header
        return Message.new_with_compiled_instructions(
            header.num_required_signatures,
            header.num_readonly_signed_accounts,
            header.num_readonly_unsigned_accounts,
            message.account_keys,
            blockhash,
            message.instructions,
        )
