from __future__ import annotations
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Processed
from solana.rpc.models import TxOpts
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from models.execution import ExecutionResult, FillDeltas, GateResult, SimResult
from utils.errors import DataIncompleteError, FillTimeoutError, OnChainRejectionError, TransientNetworkError
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

AnyTransaction = Union[Transaction, VersionedTransaction]
TxBuilder = Callable[[], Awaitable[AnyTransaction]]

LAMPORTS_PER_SOL = 1_000_000_000
MAX_SEND_ATTEMPTS = 3


# ---------- firma ----------
def sign_transaction(tx: AnyTransaction, payer: Keypair, blockhash: Hash) -> AnyTransaction:
    """Firma con el payer fijando el contexto de validez (blockhash) indicado."""
    if isinstance(tx, VersionedTransaction):
        msg = tx.message
        if isinstance(msg, MessageV0) and msg.recent_blockhash != blockhash:
            msg = MessageV0(msg.header, msg.account_keys, blockhash, msg.instructions, msg.address_table_lookups)
        return VersionedTransaction(msg, [payer])
    tx.sign([payer], blockhash)
    return tx


# ---------- reconciliación de fills ----------
def _meta(record: Dict[str, Any]) -> Dict[str, Any]:
    return record.get("meta") or (record.get("transaction") or {}).get("meta") or {}


def _account_keys(record: Dict[str, Any]) -> List[str]:
    tx = record.get("transaction") or {}
    msg = tx.get("message") or (tx.get("transaction") or {}).get("message") or {}
    keys = [k.get("pubkey") if isinstance(k, dict) else str(k) for k in msg.get("accountKeys") or []]
    # tx v0: las cuentas cargadas por lookup table van detrás de las estáticas
    loaded = _meta(record).get("loadedAddresses") or {}
    return keys + list(loaded.get("writable") or []) + list(loaded.get("readonly") or [])


def _ui_amount(entry: Dict[str, Any]) -> float:
    ui = entry.get("uiTokenAmount") or {}
    if ui.get("uiAmount") is not None:
        return float(ui["uiAmount"])
    if ui.get("uiAmountString"):
        return float(ui["uiAmountString"])
    decimals = int(ui.get("decimals") or 0)
    return int(ui.get("amount") or 0) / (10 ** decimals)


def _owned_amount(balances: Optional[List[Dict[str, Any]]], owner: str, mint: str) -> float:
    return sum(
        _ui_amount(b) for b in balances or []
        if b.get("mint") == mint and b.get("owner") == owner
    )


def compute_fill_deltas(record: Dict[str, Any], payer: str, mint: Optional[str], signature: str = "") -> FillDeltas:
    """
    Calcula el fill real a partir del registro confirmado (forma JSON de getTransaction).

    sol_delta: post - pre del payer en SOL (negativo = gastado).
    token_delta: suma post - pre de todas las cuentas del payer para ``mint``.
    """
    meta = _meta(record)
    pre = meta.get("preBalances")
    post = meta.get("postBalances")
    if pre is None or post is None:
        raise DataIncompleteError(f"registro sin preBalances/postBalances ({signature})")

    keys = _account_keys(record)
    try:
        idx = keys.index(payer)
    except ValueError:
        raise DataIncompleteError(f"payer {payer} no aparece en la tx {signature}") from None
    if idx >= len(pre) or idx >= len(post):
        raise DataIncompleteError(f"balances incompletos para el payer en {signature}")

    sol_delta = (int(post[idx]) - int(pre[idx])) / LAMPORTS_PER_SOL
    token_delta = 0.0
    if mint:
        token_delta = (
            _owned_amount(meta.get("postTokenBalances"), payer, mint)
            - _owned_amount(meta.get("preTokenBalances"), payer, mint)
        )
    return FillDeltas(
        signature=signature,
        sol_delta=sol_delta,
        token_delta=token_delta,
        fee_sol=int(meta.get("fee") or 0) / LAMPORTS_PER_SOL,
    )


class TransactionEngine:
    """
    Simula, envía, reintenta y reconcilia transacciones sobre un pool de RPCs.

    Failover round-robin: el intento 1 siempre va al RPC primario y cada
    reintento rota al siguiente. La escalera de reintentos es nuestra; el
    transporte se usa con ``max_retries=0``.
    """

    def __init__(
        self,
        clients: Sequence[AsyncClient],
        confirm_timeout_secs: float = 30.0,
        backoff_ms: int = 150,
        fill_poll_ms: int = 400,
    ) -> None:
        if not clients:
            raise ValueError("TransactionEngine necesita al menos un RPC")
        self._clients = list(clients)
        self._rpc_idx = 0
        self.confirm_timeout_secs = confirm_timeout_secs
        self.backoff_ms = backoff_ms
        self.fill_poll_ms = fill_poll_ms

    @classmethod
    def from_urls(cls, urls: Sequence[str], **kwargs) -> "TransactionEngine":
        return cls([AsyncClient(u, commitment=Confirmed) for u in urls], **kwargs)

    @property
    def primary(self) -> AsyncClient:
        return self._clients[0]

    def _next_client(self) -> AsyncClient:
        self._rpc_idx = (self._rpc_idx + 1) % len(self._clients)
        return self._clients[self._rpc_idx]

    async def _rpc_call(self, label: str, fn: Callable[[AsyncClient], Awaitable[Any]]) -> Any:
        """Llamada de lectura con failover: prueba cada RPC del pool una vez."""
        last_exc: Optional[Exception] = None
        client = self.primary
        for attempt in range(1, len(self._clients) + 1):
            try:
                return await fn(client)
            except Exception as e:
                last_exc = e
                logger.warning(f"[RPC:{label}] intento {attempt}/{len(self._clients)} falló: {e}")
                client = self._next_client()
        raise TransientNetworkError(f"RPC '{label}' falló: {last_exc}") from last_exc

    async def close(self) -> None:
        for c in self._clients:
            await c.close()

    # ---------- contexto de validez ----------
    async def _prepare(self, tx: AnyTransaction, payer: Keypair, client: AsyncClient) -> AnyTransaction:
        blockhash = tx.message.recent_blockhash
        if blockhash == Hash.default():
            # el builder no fijó blockhash: lo ponemos nosotros
            blockhash = (await client.get_latest_blockhash(Processed)).value.blockhash
        return sign_transaction(tx, payer, blockhash)

    # ---------- simulación ----------
    async def simulate(self, tx: AnyTransaction, client: Optional[AsyncClient] = None) -> SimResult:
        """Dry-run sin commit. Nunca lanza: los fallos de transporte son ok=False."""
        client = client or self.primary
        try:
            resp = await client.simulate_transaction(tx, sig_verify=False, commitment=Processed)
        except Exception as e:
            return SimResult(ok=False, err=str(e) or e.__class__.__name__)
        value = resp.value
        logs = list(value.logs or [])
        if value.err is not None:
            return SimResult(ok=False, err=str(value.err), logs=logs)
        return SimResult(ok=True, logs=logs)

    async def simulate_buy_sell_gate(
        self,
        build_buy: TxBuilder,
        build_sell: TxBuilder,
        payer: Keypair,
        client: Optional[AsyncClient] = None,
    ) -> GateResult:
        """Simula la compra y, solo si pasa, una venta parcial: la posición debe poder deshacerse."""
        client = client or self.primary

        try:
            buy_tx = await self._prepare(await build_buy(), payer, client)
        except Exception as e:
            return GateResult(ok=False, reason=f"BUY simulation failed: build error {e}")
        buy_sim = await self.simulate(buy_tx, client)
        if not buy_sim.ok:
            return GateResult(ok=False, reason=f"BUY simulation failed: {buy_sim.err}", buy=buy_sim)

        try:
            sell_tx = await self._prepare(await build_sell(), payer, client)
        except Exception as e:
            return GateResult(ok=False, reason=f"SELL simulation failed: build error {e}", buy=buy_sim)
        sell_sim = await self.simulate(sell_tx, client)
        if not sell_sim.ok:
            return GateResult(ok=False, reason=f"SELL simulation failed: {sell_sim.err}", buy=buy_sim, sell=sell_sim)

        return GateResult(ok=True, buy=buy_sim, sell=sell_sim)

    # ---------- envío ----------
    async def _confirm(self, client: AsyncClient, sig: Signature) -> None:
        """Espera confirmación con un blockhash recién pedido. Un error on-chain lanza OnChainRejectionError."""
        latest = (await client.get_latest_blockhash(Processed)).value
        try:
            resp = await asyncio.wait_for(
                client.confirm_transaction(
                    sig,
                    Confirmed,
                    sleep_seconds=0.5,
                    last_valid_block_height=latest.last_valid_block_height,
                ),
                timeout=self.confirm_timeout_secs,
            )
        except asyncio.TimeoutError:
            raise TransientNetworkError(f"confirmación expirada ({self.confirm_timeout_secs}s) sig={sig}") from None
        statuses = resp.value or []
        status = statuses[0] if statuses else None
        if status is None:
            raise TransientNetworkError(f"sin estado de firma para {sig}")
        if status.err is not None:
            raise OnChainRejectionError(str(status.err))

    @log_function
    async def send_with_retry(self, tx_builder: TxBuilder, payer: Keypair) -> ExecutionResult:
        last_error: Optional[str] = None

        for attempt in range(1, MAX_SEND_ATTEMPTS + 1):
            client = self.primary if attempt == 1 else self._next_client()
            try:
                # tx nueva en cada intento: blockhash y priority fee frescos
                tx = await self._prepare(await tx_builder(), payer, client)
                opts = TxOpts(skip_preflight=False, max_retries=0, preflight_commitment=Processed)
                sig = (await client.send_raw_transaction(bytes(tx), opts=opts)).value

                await self._confirm(client, sig)
                logger.info(f"[tx] confirmada sig={sig} (intento {attempt})")
                return ExecutionResult(signature=str(sig), confirmed=True, attempt=attempt)
            except OnChainRejectionError as e:
                # consume el intento igual que un fallo de transporte, sin backoff
                last_error = str(e)
                logger.warning(f"[tx] intento {attempt}/{MAX_SEND_ATTEMPTS} confirmada con error: {last_error}")
            except Exception as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(f"[tx] intento {attempt}/{MAX_SEND_ATTEMPTS} falló: {last_error}")
                await asyncio.sleep(self.backoff_ms * attempt / 1000)

        logger.error(f"[tx] escalera agotada tras {MAX_SEND_ATTEMPTS} intentos: {last_error}")
        return ExecutionResult(confirmed=False, error=last_error, attempt=MAX_SEND_ATTEMPTS)

    # ---------- fills ----------
    async def get_fill_deltas(
        self,
        signature: Union[str, Signature],
        payer: Union[str, Pubkey],
        mint: Optional[str] = None,
        max_wait_ms: int = 8000,
    ) -> FillDeltas:
        """
        Lee el fill real de la tx confirmada. El nodo puede tardar en servir el
        registro tras confirmar, así que se sondea hasta ``max_wait_ms``.
        """
        sig = signature if isinstance(signature, Signature) else Signature.from_string(signature)
        deadline = time.monotonic() + max_wait_ms / 1000
        last_error: Optional[str] = None

        while True:
            record: Optional[Dict[str, Any]] = None
            try:
                resp = await self.primary.get_transaction(
                    sig, encoding="json", commitment=Confirmed, max_supported_transaction_version=0
                )
                if resp.value is not None:
                    record = json.loads(resp.value.to_json())
            except Exception as e:
                last_error = str(e)
                logger.debug(f"[fill] getTransaction {sig} falló: {e}")

            if record is not None:
                return compute_fill_deltas(record, str(payer), mint, signature=str(sig))

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                detail = f": {last_error}" if last_error else ""
                raise FillTimeoutError(f"registro de {sig} no disponible tras {max_wait_ms} ms{detail}")
            await asyncio.sleep(min(self.fill_poll_ms / 1000, remaining))

    async def send_with_retry_and_fetch_fill(
        self,
        tx_builder: TxBuilder,
        payer: Keypair,
        mint: Optional[str] = None,
        max_wait_ms: int = 8000,
    ) -> ExecutionResult:
        """Envía y reconcilia. Un fallo del fill NO invalida una tx confirmada."""
        result = await self.send_with_retry(tx_builder, payer)
        if not result.confirmed or not result.signature:
            return result
        try:
            result.fill = await self.get_fill_deltas(result.signature, payer.pubkey(), mint, max_wait_ms)
        except DataIncompleteError as e:
            result.fill_error = str(e)
            logger.warning(f"[fill] {result.signature}: {e}")
        return result

    async def get_balance_sol(self, pubkey: Pubkey) -> float:
        resp = await self._rpc_call("get_balance", lambda c: c.get_balance(pubkey, commitment=Confirmed))
        return resp.value / LAMPORTS_PER_SOL
