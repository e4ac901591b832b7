"""Wallet state store: the single owner of the wallet session.

Balances, identity and transaction history are written here and nowhere else;
every other component reads an immutable :class:`WalletSession` snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from sona_wallet.core.events import (
    SESSION_CONNECTED,
    SESSION_DISCONNECTED,
    WALLET_BALANCES,
    WALLET_TRANSACTION,
    Callback,
    EventBus,
    Subscription,
)
from sona_wallet.errors import NetworkFailure, RpcError, SignerUnavailable, WalletError
from sona_wallet.wallet.assets import Asset, AssetRegistry
from sona_wallet.wallet.models import (
    ConfirmationState,
    Direction,
    TransactionRecord,
    WalletSession,
)
from sona_wallet.wallet.rpc import SolanaRpcClient
from sona_wallet.wallet.signer import SignerGateway

logger = logging.getLogger("sona_wallet.wallet.store")


class WalletStateStore:
    """Per-session cache of identity, balances and recent history.

    Parameters
    ----------
    rpc:
        Chain RPC boundary used for balance and history queries.
    signer:
        External signer used for the connect handshake; ``None`` when no
        wallet is installed.
    assets:
        The asset whitelist.
    bus:
        Event bus that receives every state change.
    refresh_interval:
        Seconds between background refreshes while connected.
    history_capacity:
        Maximum number of :class:`TransactionRecord` kept, newest first.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        signer: SignerGateway | None,
        assets: AssetRegistry,
        bus: EventBus | None = None,
        *,
        refresh_interval: float = 30.0,
        history_capacity: int = 10,
    ) -> None:
        self.rpc = rpc
        self.signer = signer
        self.assets = assets
        self.bus = bus or EventBus()
        self.refresh_interval = refresh_interval

        self._identity: str | None = None
        self._native: Decimal | None = None
        self._fungible: dict[str, Decimal] = {}
        self._refreshed: dict[str, datetime] = {}
        self._history: deque[TransactionRecord] = deque(maxlen=history_capacity)
        self._snapshot = WalletSession(native_symbol=assets.native.symbol)

        self._connecting: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        # Follow-up refresh waiting for an older in-flight one to finish
        self._queued: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        # Bumped on every connect/disconnect so late refresh results are dropped
        self._epoch = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> WalletSession:
        """Return the current immutable session snapshot."""
        return self._snapshot

    @property
    def identity(self) -> str | None:
        return self._identity

    def subscribe(self, topic: str, callback: Callback) -> Subscription:
        return self.bus.subscribe(topic, callback)

    def _rebuild_snapshot(self) -> WalletSession:
        self._snapshot = WalletSession(
            identity=self._identity,
            native_symbol=self.assets.native.symbol,
            native_balance=self._native,
            fungible_balances=MappingProxyType(dict(self._fungible)),
            last_refreshed=MappingProxyType(dict(self._refreshed)),
            history=tuple(self._history),
        )
        return self._snapshot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> str:
        """Handshake with the signer, start polling and seed balances."""
        if self._identity is not None:
            return self._identity
        if self.signer is None:
            raise SignerUnavailable("No wallet signer is installed")
        # Concurrent callers share one handshake
        if self._connecting is None or self._connecting.done():
            self._connecting = asyncio.create_task(self._do_connect(self.signer))
        return await asyncio.shield(self._connecting)

    async def _do_connect(self, signer: SignerGateway) -> str:
        identity = await signer.connect()
        if self._poll_task is not None:
            self._poll_task.cancel()
        self._epoch += 1
        self._identity = identity
        self._rebuild_snapshot()
        logger.info(f"Wallet connected: {identity}")
        await self.bus.publish(SESSION_CONNECTED, identity=identity)

        self._poll_task = asyncio.create_task(self._poll_loop(), name="sona-wallet-refresh")
        await self.refresh()
        return identity

    async def disconnect(self) -> None:
        """Clear identity, balances and history. Safe to call repeatedly."""
        was_connected = self._identity is not None

        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

        if was_connected and self.signer is not None:
            try:
                await self.signer.disconnect()
            except WalletError as e:
                logger.warning(f"Signer disconnect failed: {e}")

        self._epoch += 1
        self._identity = None
        self._native = None
        self._fungible.clear()
        self._refreshed.clear()
        self._history.clear()
        self._inflight = None
        self._queued = None
        self._rebuild_snapshot()

        if was_connected:
            logger.info("Wallet disconnected")
            await self.bus.publish(SESSION_DISCONNECTED)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            try:
                await self.refresh()
                await self.sync_history()
            except WalletError as e:
                logger.warning(f"Background refresh failed: {e}")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, *, fresh: bool = False) -> WalletSession:
        """Re-query balances. Concurrent callers share one in-flight refresh.

        With ``fresh=True`` the result comes from queries issued after this
        call: if an older refresh is still running, one follow-up refresh is
        queued behind it and shared by every ``fresh`` caller until it starts.
        """
        if self._identity is None:
            return self._snapshot
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._do_refresh(self._epoch))
            task = self._inflight
        elif not fresh:
            task = self._inflight
        else:
            if self._queued is None:
                self._queued = asyncio.create_task(
                    self._refresh_after(self._inflight, self._epoch)
                )
            task = self._queued
        # Shield: one caller being cancelled must not cancel the shared query
        return await asyncio.shield(task)

    async def _refresh_after(self, previous: asyncio.Task, epoch: int) -> WalletSession:
        await asyncio.wait([previous])
        if self._queued is asyncio.current_task():
            self._queued = None
        if epoch != self._epoch:
            return self._snapshot
        self._inflight = asyncio.create_task(self._do_refresh(epoch))
        return await self._inflight

    async def _do_refresh(self, epoch: int) -> WalletSession:
        owner = self._identity
        assert owner is not None
        updates: dict[str, Decimal] = {}

        native = self.assets.native
        try:
            lamports = await self.rpc.get_balance(owner)
            updates[native.symbol] = native.from_minor(lamports)
        except (NetworkFailure, RpcError) as e:
            logger.warning(f"Keeping cached {native.symbol} balance: {e}")

        for asset in self.assets.fungible():
            try:
                updates[asset.symbol] = await self._fetch_token_balance(owner, asset)
            except (NetworkFailure, RpcError) as e:
                logger.warning(f"Keeping cached {asset.symbol} balance: {e}")

        if epoch != self._epoch:
            logger.debug("Discarding refresh result from a previous session")
            return self._snapshot

        now = datetime.now(timezone.utc)
        for symbol, value in updates.items():
            if symbol == native.symbol:
                self._native = value
            else:
                self._fungible[symbol] = value
            self._refreshed[symbol] = now

        snapshot = self._rebuild_snapshot()
        if updates:
            await self.bus.publish(
                WALLET_BALANCES,
                balances={k: str(v) for k, v in updates.items()},
            )
        return snapshot

    async def _fetch_token_balance(self, owner: str, asset: Asset) -> Decimal:
        ata = get_associated_token_address(
            Pubkey.from_string(owner), Pubkey.from_string(asset.mint)
        )
        if await self.rpc.get_account_info(str(ata)) is None:
            # No token account yet: the wallet simply holds none of this asset
            return Decimal(0)
        raw, decimals = await self.rpc.get_token_account_balance(str(ata))
        return Decimal(raw).scaleb(-decimals)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def record_transaction(self, record: TransactionRecord) -> None:
        """Prepend *record* to the bounded history (newest first)."""
        if self._identity is None:
            logger.debug(f"Not recording {record.signature}: wallet disconnected")
            return
        if any(r.signature == record.signature for r in self._history):
            return
        self._history.appendleft(record)
        self._rebuild_snapshot()
        self._notify_transaction(record)

    def resolve_transaction(self, signature: str, state: ConfirmationState) -> TransactionRecord | None:
        """Move a submitted record to its terminal *state* (once)."""
        for index, record in enumerate(self._history):
            if record.signature != signature:
                continue
            if record.state.is_terminal:
                logger.debug(f"Ignoring update of finished transaction {signature}")
                return record
            updated = record.with_state(state)
            self._history[index] = updated
            self._rebuild_snapshot()
            self._notify_transaction(updated)
            return updated
        return None

    def _notify_transaction(self, record: TransactionRecord) -> None:
        # Sync mutators, so listeners are notified from a task
        task = asyncio.get_running_loop().create_task(
            self.bus.publish(WALLET_TRANSACTION, wallet=self._identity, record=record.to_dict())
        )
        task.add_done_callback(_log_task_error)

    async def sync_history(self) -> int:
        """Merge recent on-chain signatures into the history. Returns how many were added."""
        owner = self._identity
        if owner is None:
            return 0
        epoch = self._epoch
        known = {r.signature: r.state for r in self._history}
        entries = await self.rpc.get_signatures_for_address(owner, limit=self._history.maxlen or 10)

        found: list[TransactionRecord] = []
        landed: dict[str, ConfirmationState] = {}
        for entry in entries:
            signature = entry.get("signature")
            if not signature:
                continue
            if signature in known:
                if not known[signature].is_terminal:
                    landed[signature] = (
                        ConfirmationState.FAILED if entry.get("err") else ConfirmationState.CONFIRMED
                    )
                continue
            tx = await self.rpc.get_transaction(signature)
            if tx is None:
                continue
            record = self._record_from_chain(owner, signature, entry, tx)
            if record is not None:
                found.append(record)

        if epoch != self._epoch:
            return 0

        # Submissions the watcher gave up on are settled by their on-chain entry
        for signature, state in landed.items():
            self.resolve_transaction(signature, state)

        # Transfers recorded while the lookups were running are already present
        current = {r.signature for r in self._history}
        found = [r for r in found if r.signature not in current]
        if not found:
            return 0

        merged = sorted(
            list(self._history) + found, key=lambda r: r.timestamp, reverse=True
        )
        self._history.clear()
        self._history.extend(merged[: self._history.maxlen])
        self._rebuild_snapshot()
        for record in found:
            if record in self._history:
                self._notify_transaction(record)
        return len(found)

    def _record_from_chain(
        self, owner: str, signature: str, entry: dict, tx: dict
    ) -> TransactionRecord | None:
        meta = tx.get("meta") or {}
        keys = tx.get("transaction", {}).get("message", {}).get("accountKeys", [])
        block_time = entry.get("blockTime") or tx.get("blockTime")
        timestamp = (
            datetime.fromtimestamp(block_time, tz=timezone.utc)
            if block_time
            else datetime.now(timezone.utc)
        )
        state = ConfirmationState.FAILED if meta.get("err") else ConfirmationState.CONFIRMED

        # Token movements of whitelisted mints take precedence over the fee-only native delta
        token_deltas: dict[str, int] = {}
        for sign, key in ((-1, "preTokenBalances"), (1, "postTokenBalances")):
            for balance in meta.get(key) or []:
                if balance.get("owner") != owner:
                    continue
                asset = self.assets.by_mint(balance.get("mint", ""))
                if asset is None:
                    continue
                raw = int(balance.get("uiTokenAmount", {}).get("amount", 0))
                token_deltas[asset.symbol] = token_deltas.get(asset.symbol, 0) + sign * raw
        for symbol, delta in token_deltas.items():
            if delta != 0:
                return TransactionRecord(
                    signature=signature,
                    asset=symbol,
                    amount=self.assets.get(symbol).from_minor(abs(delta)),
                    direction=Direction.IN if delta > 0 else Direction.OUT,
                    state=state,
                    timestamp=timestamp,
                )

        if owner not in keys:
            return None
        index = keys.index(owner)
        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        if index >= len(pre) or index >= len(post):
            return None
        delta = post[index] - pre[index]
        if delta == 0:
            return None
        native = self.assets.native
        return TransactionRecord(
            signature=signature,
            asset=native.symbol,
            amount=native.from_minor(abs(delta)),
            direction=Direction.IN if delta > 0 else Direction.OUT,
            state=state,
            timestamp=timestamp,
        )


def _log_task_error(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Event publication failed: {exc}")
