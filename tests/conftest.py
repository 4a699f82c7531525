"""Shared fixtures: temp SQLite store, settings, controllable clock, fake RPCs and fake executors."""

import asyncio
import json
import os
import tempfile
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

# los logs de los tests no deben ensuciar ./logs del proyecto
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="sol_sniper_logs_"))

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from controllers.position_fsm import PositionFSM
from enums.position_state import TradeSide
from models.execution import ExecutionResult, FillDeltas, GateResult
from models.trade_event import TradeEvent
from repositories.position_store import PositionStore
from repositories.state_repository import StateRepository
from schemas.status_schema import RuntimeFlags
from services.alert_service import AlertService
from utils.config import Settings


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_settings(**overrides: Any) -> Settings:
    base: Dict[str, Any] = {"rpc_urls": ["http://127.0.0.1:8899"], "dry_run": True, "enable_live_trading": False}
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store(tmp_path) -> PositionStore:
    return PositionStore(str(tmp_path / "bot.db"))


@pytest.fixture
def state() -> StateRepository:
    return StateRepository(window=200)


@pytest.fixture
def fsm(store, clock) -> PositionFSM:
    return PositionFSM(store.save_position, clock=clock)


@pytest.fixture
def flags() -> RuntimeFlags:
    return RuntimeFlags()


@pytest.fixture
def alerts():
    service = AlertService()
    service.sent = []

    async def sink(level: str, message: str) -> None:
        service.sent.append((level, message))

    service.add_sink(sink)
    return service


@pytest.fixture
def payer() -> Keypair:
    return Keypair()


def trade(mint: str, price: float, ts: int, side: TradeSide = TradeSide.BUY, trader: str = "t1",
          sol_amount: float = 0.5, signature: Optional[str] = None) -> TradeEvent:
    return TradeEvent(
        signature=signature or f"sig-{mint}-{ts}-{trader}",
        mint=mint,
        price=price,
        sol_amount=sol_amount,
        side=side,
        trader=trader,
        timestamp=ts,
    )


# ---------- RPC falso para el motor de ejecución ----------
class FakeRecord:
    def __init__(self, data: Dict[str, Any]) -> None:
        self._data = data

    def to_json(self) -> str:
        return json.dumps(self._data)


class FakeRpc:
    """Imita la superficie de AsyncClient que usa el motor."""

    def __init__(
        self,
        name: str = "rpc",
        send_exc: Optional[Exception] = None,
        confirm_errs: Optional[List[Any]] = None,
        sim_errs: Optional[List[Any]] = None,
        records: Optional[List[Optional[Dict[str, Any]]]] = None,
        balance_lamports: int = 2_000_000_000,
        balance_exc: Optional[Exception] = None,
        confirm_hangs: bool = False,
    ) -> None:
        self.name = name
        self.send_exc = send_exc
        self.confirm_errs = list(confirm_errs or [])
        self.sim_errs = list(sim_errs or [])
        self.records = list(records or [])
        self.balance_lamports = balance_lamports
        self.balance_exc = balance_exc
        self.confirm_hangs = confirm_hangs
        self.blockhash = Hash.new_unique()
        self.sent: List[bytes] = []
        self.simulated: List[Any] = []
        self.tx_lookups = 0
        self.closed = False

    async def get_latest_blockhash(self, commitment=None):
        return SimpleNamespace(value=SimpleNamespace(blockhash=self.blockhash, last_valid_block_height=1000))

    async def simulate_transaction(self, tx, sig_verify=False, commitment=None):
        self.simulated.append(tx)
        err = self.sim_errs.pop(0) if self.sim_errs else None
        return SimpleNamespace(value=SimpleNamespace(err=err, logs=["Program log: Instruction: Buy"]))

    async def send_raw_transaction(self, raw, opts=None):
        self.sent.append(raw)
        if self.send_exc is not None:
            raise self.send_exc
        return SimpleNamespace(value=Signature.new_unique())

    async def confirm_transaction(self, sig, commitment=None, sleep_seconds=0.5, last_valid_block_height=None):
        if self.confirm_hangs:
            await asyncio.sleep(3600)
        err = self.confirm_errs.pop(0) if self.confirm_errs else None
        return SimpleNamespace(value=[SimpleNamespace(err=err)])

    async def get_transaction(self, sig, encoding="json", commitment=None, max_supported_transaction_version=None):
        self.tx_lookups += 1
        record = self.records.pop(0) if self.records else None
        return SimpleNamespace(value=FakeRecord(record) if record is not None else None)

    async def get_balance(self, pubkey, commitment=None):
        if self.balance_exc is not None:
            raise self.balance_exc
        return SimpleNamespace(value=self.balance_lamports)

    async def close(self):
        self.closed = True


def transfer_builder(payer: Keypair, counter: Optional[List[int]] = None):
    """Builder de una tx legacy real sin blockhash (el motor lo fija)."""

    async def build():
        if counter is not None:
            counter.append(1)
        ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1))
        return Transaction.new_with_payer([ix], payer.pubkey())

    return build


def tx_record(payer: str, mint: str, pre_lamports: int, post_lamports: int,
              pre_tokens: float, post_tokens: float, fee: int = 5000) -> Dict[str, Any]:
    """Registro getTransaction (JSON) mínimo con snapshots pre/post."""

    def balance(amount: float) -> Dict[str, Any]:
        return {
            "accountIndex": 2,
            "mint": mint,
            "owner": payer,
            "uiTokenAmount": {"uiAmount": amount, "decimals": 6,
                              "amount": str(int(amount * 10**6)), "uiAmountString": str(amount)},
        }

    return {
        "slot": 1,
        "transaction": {"signatures": ["x"], "message": {"accountKeys": [payer, "Other1111", "Ata11111"]}},
        "meta": {
            "err": None,
            "fee": fee,
            "preBalances": [pre_lamports, 0, 0],
            "postBalances": [post_lamports, 0, 0],
            "preTokenBalances": [balance(pre_tokens)] if pre_tokens else [],
            "postTokenBalances": [balance(post_tokens)] if post_tokens else [],
        },
    }


# ---------- ejecutores falsos para los controladores ----------
class FakeEngine:
    def __init__(self) -> None:
        self.gate = GateResult(ok=True)
        self.result = ExecutionResult(signature="SigConfirmed", confirmed=True, attempt=1)
        self.balance = 5.0
        self.balance_exc: Optional[Exception] = None
        self.sent_builders: List[Any] = []
        self.gate_calls = 0

    async def simulate_buy_sell_gate(self, build_buy, build_sell, payer, client=None):
        self.gate_calls += 1
        await build_buy()
        await build_sell()
        return self.gate

    async def send_with_retry_and_fetch_fill(self, tx_builder, payer, mint=None, max_wait_ms=8000):
        self.sent_builders.append(tx_builder)
        await tx_builder()
        return self.result.model_copy(deep=True)

    async def get_balance_sol(self, pubkey):
        if self.balance_exc is not None:
            raise self.balance_exc
        return self.balance


class FakeAdapter:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    async def build_buy_tx(self, payer, mint, amount_sol):
        self.calls.append(("buy", mint, amount_sol))
        return object()

    async def build_sell_tx(self, payer, mint, amount):
        self.calls.append(("sell", mint, amount))
        return object()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


def buy_fill(signature: str, sol_spent: float, tokens: float) -> FillDeltas:
    return FillDeltas(signature=signature, sol_delta=-sol_spent, token_delta=tokens, fee_sol=0.000005)
