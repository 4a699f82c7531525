"""PumpPortal trade-local adapter over a fake aiohttp session."""

import aiohttp
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from services.pumpportal_service import PumpPortalTradeService, format_amount
from utils.errors import TradeBuildError


def unsigned_tx_bytes(payer: Keypair) -> bytes:
    ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1))
    msg = MessageV0.try_compile(payer.pubkey(), [ix], [], Hash.default())
    return bytes(VersionedTransaction.populate(msg, [Signature.default()]))


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    closed = False

    def __init__(self, status=200, body=b"", exc=None):
        self.status = status
        self.body = body
        self.exc = exc
        self.posts = []

    def post(self, url, data=None):
        self.posts.append((url, data))
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.status, self.body)


@pytest.mark.parametrize("amount,expected", [(0.4, "0.4"), (1, "1"), (0.000001, "0.000001"), (" 25% ", "25%")])
def test_format_amount(amount, expected):
    assert format_amount(amount) == expected


async def test_buy_posts_form_and_parses_tx(settings, payer):
    session = FakeSession(body=unsigned_tx_bytes(payer))
    service = PumpPortalTradeService(settings, session=session)

    tx = await service.build_buy_tx(payer, "MintA", 0.4)

    assert isinstance(tx, VersionedTransaction)
    url, form = session.posts[0]
    assert url == settings.pump_trade_local_url
    assert form["action"] == "buy"
    assert form["amount"] == "0.4"
    assert form["denominatedInSol"] == "true"
    assert form["publicKey"] == str(payer.pubkey())
    assert form["pool"] == "pump"


async def test_sell_by_percentage(settings, payer):
    session = FakeSession(body=unsigned_tx_bytes(payer))
    await PumpPortalTradeService(settings, session=session).build_sell_tx(payer, "MintA", "100%")

    form = session.posts[0][1]
    assert form["action"] == "sell"
    assert form["amount"] == "100%"
    assert form["denominatedInSol"] == "false"


@pytest.mark.parametrize("session", [
    FakeSession(status=400, body=b"Bad Request"),
    FakeSession(body=b"not a transaction"),
    FakeSession(exc=aiohttp.ClientConnectionError("refused")),
])
async def test_failures_raise_trade_build_error(settings, payer, session):
    with pytest.raises(TradeBuildError):
        await PumpPortalTradeService(settings, session=session).build_buy_tx(payer, "MintA", 0.4)


async def test_close_leaves_injected_session_open(settings):
    session = FakeSession()
    await PumpPortalTradeService(settings, session=session).close()
    assert session.closed is False
