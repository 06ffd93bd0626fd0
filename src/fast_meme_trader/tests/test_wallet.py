"""
Tests for private key parsing and transaction signing.
"""
import json
import pytest

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from fast_meme_trader.execution.errors import SigningError
from fast_meme_trader.wallet import (
    InvalidPrivateKeyError,
    KeypairSigner,
    parse_private_key,
)


@pytest.fixture
def keypair():
    return Keypair()


def unsigned_transfer(payer: Keypair, blockhash: Hash) -> bytes:
    """A venue-style unsigned v0 transaction with a placeholder signature."""
    ix = transfer(TransferParams(
        from_pubkey=payer.pubkey(),
        to_pubkey=Keypair().pubkey(),
        lamports=1_000,
    ))
    message = MessageV0.try_compile(payer.pubkey(), [ix], [], blockhash)
    return bytes(VersionedTransaction.populate(message, [Signature.default()]))


# =============================================================================
# Key Parsing
# =============================================================================


class TestParsePrivateKey:
    """Every supported export format yields the same wallet."""

    def test_base58(self, keypair):
        assert parse_private_key(str(keypair)).pubkey() == keypair.pubkey()

    def test_json_array(self, keypair):
        text = json.dumps(list(bytes(keypair)))
        assert parse_private_key(text).pubkey() == keypair.pubkey()

    def test_comma_separated(self, keypair):
        text = ", ".join(str(b) for b in bytes(keypair))
        assert parse_private_key(text).pubkey() == keypair.pubkey()

    def test_hex(self, keypair):
        assert parse_private_key(bytes(keypair).hex()).pubkey() == keypair.pubkey()

    def test_hex_with_prefix(self, keypair):
        text = "0x" + bytes(keypair).hex()
        assert parse_private_key(text).pubkey() == keypair.pubkey()

    def test_32_byte_seed(self, keypair):
        text = json.dumps(list(keypair.secret()))
        assert parse_private_key(text).pubkey() == keypair.pubkey()

    def test_surrounding_whitespace(self, keypair):
        assert parse_private_key(f"  {keypair}\n").pubkey() == keypair.pubkey()

    @pytest.mark.parametrize(
        "text",
        [
            "not-a-key",
            "[1, 2, 3]",
            "[300, 1]",
            "1,2,x",
            "0x1234",
            "",
        ],
    )
    def test_invalid(self, text):
        with pytest.raises(InvalidPrivateKeyError):
            parse_private_key(text)

    def test_error_never_contains_key(self, keypair):
        secret = str(keypair)[:-3] + "000"

        with pytest.raises(InvalidPrivateKeyError) as exc_info:
            parse_private_key(secret)

        assert secret not in str(exc_info.value)
        assert exc_info.value.__cause__ is None
        assert exc_info.value.length == len(secret)


# =============================================================================
# Signing
# =============================================================================


class TestKeypairSigner:
    """Signing rebuilds the message around the given blockhash."""

    def test_public_key(self, keypair):
        assert KeypairSigner(keypair).public_key == str(keypair.pubkey())

    def test_signs_with_fresh_blockhash(self, keypair):
        payload = unsigned_transfer(keypair, Hash.new_unique())
        fresh = Hash.new_unique()

        signed = VersionedTransaction.from_bytes(
            KeypairSigner(keypair).sign(payload, str(fresh))
        )

        assert signed.message.recent_blockhash == fresh
        assert signed.signatures[0] != Signature.default()

    def test_resign_changes_signature(self, keypair):
        signer = KeypairSigner(keypair)
        payload = unsigned_transfer(keypair, Hash.new_unique())

        first = VersionedTransaction.from_bytes(signer.sign(payload, str(Hash.new_unique())))
        second = VersionedTransaction.from_bytes(signer.sign(payload, str(Hash.new_unique())))

        assert first.signatures[0] != second.signatures[0]

    def test_garbage_payload(self, keypair):
        with pytest.raises(SigningError):
            KeypairSigner(keypair).sign(b"\x00garbage", str(Hash.new_unique()))

    def test_bad_blockhash(self, keypair):
        payload = unsigned_transfer(keypair, Hash.new_unique())
        with pytest.raises(SigningError):
            KeypairSigner(keypair).sign(payload, "not-a-hash")

    def test_foreign_fee_payer(self, keypair):
        payload = unsigned_transfer(Keypair(), Hash.new_unique())
        with pytest.raises(SigningError):
            KeypairSigner(keypair).sign(payload, str(Hash.new_unique()))
