"""
Shared test fixtures for integration tests.

This file provides fixtures that span multiple components, unlike
component-specific fixtures in src/fast_meme_trader/{component}/tests/conftest.py.

Network access never happens: JupiterClient._request and
SolanaRpcClient._call are replaced by in-memory fakes, while signing uses a
real solders keypair.
"""
import base64
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from fast_meme_trader.execution import (
    OrderPipeline,
    Platform,
    PlatformSelector,
    PositionStore,
    TradingService,
    TransientRemoteError,
)
from fast_meme_trader.ingestion import JupiterClient, SolanaRpcClient
from fast_meme_trader.wallet import KeypairSigner


class FakeClock:
    """Clock that records sleeps instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeJupiter:
    """Answers quote, swap and price requests for JupiterClient._request."""

    def __init__(self, wallet: Keypair):
        self.wallet = wallet
        self.prices = {}
        self.out_amount = 5_000_000
        self.quote_failures = 0
        self.requests = []

    def unsigned_transaction(self) -> str:
        ix = transfer(TransferParams(
            from_pubkey=self.wallet.pubkey(),
            to_pubkey=Keypair().pubkey(),
            lamports=1_000,
        ))
        message = MessageV0.try_compile(self.wallet.pubkey(), [ix], [], Hash.new_unique())
        tx = VersionedTransaction.populate(message, [Signature.default()])
        return base64.b64encode(bytes(tx)).decode()

    async def __call__(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))

        if url.endswith("/quote"):
            if self.quote_failures:
                self.quote_failures -= 1
                raise TransientRemoteError("API error: 429 - rate limited", status_code=429)
            return {"inAmount": kwargs["params"]["amount"], "outAmount": str(self.out_amount)}

        if url.endswith("/swap"):
            return {"swapTransaction": self.unsigned_transaction(), "lastValidBlockHeight": 1}

        token_id = kwargs["params"]["ids"]
        price = self.prices.get(token_id)
        if price is None:
            return {"data": {}}
        return {"data": {token_id: {"id": token_id, "price": str(price)}}}


class FakeChain:
    """Answers JSON-RPC calls for SolanaRpcClient._call."""

    def __init__(self):
        self.blockhashes = []
        self.sent = []
        self.send_failures = 0
        self.token_balances = {}
        self.lamports = 1_500_000_000

    async def __call__(self, method, params=None, url=None, timeout=None):
        if method == "getLatestBlockhash":
            blockhash = str(Hash.new_unique())
            self.blockhashes.append(blockhash)
            return {"context": {"slot": len(self.blockhashes)}, "value": {"blockhash": blockhash}}

        if method == "sendTransaction":
            self.sent.append(base64.b64decode(params[0]))
            if self.send_failures:
                self.send_failures -= 1
                raise TransientRemoteError("sendTransaction error: Blockhash not found")
            return f"sig-{len(self.sent)}"

        if method == "getSignatureStatuses":
            return {"value": [{"confirmationStatus": "confirmed", "err": None}]}

        if method == "getTokenAccountsByOwner":
            amount = self.token_balances.get(params[1]["mint"], 0)
            if not amount:
                return {"value": []}
            info = {"tokenAmount": {"amount": str(amount)}}
            return {"value": [{"account": {"data": {"parsed": {"info": info}}}}]}

        if method == "getBalance":
            return {"context": {}, "value": self.lamports}

        raise AssertionError(f"unexpected RPC method {method}")


@pytest.fixture
def wallet():
    return Keypair()


@pytest.fixture
def token_id():
    return str(Keypair().pubkey())


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_jupiter(wallet):
    return FakeJupiter(wallet)


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def trader(wallet, fake_jupiter, fake_chain, fake_clock):
    """TradingService wired to real clients whose transport is faked."""
    jupiter = JupiterClient(quote_url="https://quote.test/v6", price_url="https://price.test")
    jupiter._request = AsyncMock(side_effect=fake_jupiter.__call__)

    rpc = SolanaRpcClient(rpc_url="https://rpc.test")
    rpc._call = AsyncMock(side_effect=fake_chain.__call__)

    signer = KeypairSigner(wallet)
    pipeline = OrderPipeline(
        venues={Platform.JUPITER: jupiter},
        ledger=rpc,
        signer=signer,
        fee_estimator=rpc,
        clock=fake_clock,
    )
    return TradingService(
        pipeline=pipeline,
        store=PositionStore(),
        selector=PlatformSelector(),
        oracle=jupiter,
        balances=rpc,
        owner=signer.public_key,
    )


@pytest.fixture
def set_price(fake_jupiter):
    def _set(token_id, price):
        fake_jupiter.prices[token_id] = Decimal(price)
    return _set
