"""Solana RPC boundary built on solana-py's ``AsyncClient``.

Transport problems (timeouts, connection errors, HTTP error statuses) become
:class:`NetworkFailure`; error objects returned by the node become
:class:`RpcError`. Results are handed to the rest of the wallet as plain
values so nothing above this module depends on solana-py response types.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from sona_wallet.errors import NetworkFailure, RpcError

logger = logging.getLogger("sona_wallet.wallet.rpc")

_CONFIRMATION_NAMES = {
    TransactionConfirmationStatus.Processed: "processed",
    TransactionConfirmationStatus.Confirmed: "confirmed",
    TransactionConfirmationStatus.Finalized: "finalized",
}


class SolanaRpcClient:
    """Async wrapper around the handful of RPC methods the wallet needs.

    Parameters
    ----------
    rpc_url:
        HTTP JSON-RPC endpoint.
    commitment:
        Default commitment level for reads.
    client:
        Optional pre-built ``AsyncClient``.
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        client: AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._client = client or AsyncClient(rpc_url, commitment=Commitment(commitment), timeout=timeout)

    async def close(self) -> None:
        await self._client.close()

    async def _call(self, method: str, request: Awaitable[Any]) -> Any:
        logger.debug("RPC %s -> %s", method, self.rpc_url)
        try:
            return await request
        except SolanaRpcException as exc:
            raise NetworkFailure(f"{method}: {exc}") from exc
        except RPCException as exc:
            error = exc.args[0] if exc.args else exc
            raise RpcError(
                int(getattr(error, "code", -1)),
                f"{method}: {getattr(error, 'message', error)}",
                getattr(error, "data", None),
            ) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        resp = await self._call("getBalance", self._client.get_balance(Pubkey.from_string(address)))
        return int(resp.value)

    async def get_account_info(self, address: str) -> dict | None:
        """Account summary, or ``None`` if the account does not exist."""
        resp = await self._call(
            "getAccountInfo", self._client.get_account_info(Pubkey.from_string(address))
        )
        account = resp.value
        if account is None:
            return None
        return {"lamports": account.lamports, "owner": str(account.owner)}

    async def get_token_account_balance(self, address: str) -> tuple[int, int]:
        """Token account balance as ``(raw_amount, decimals)``."""
        resp = await self._call(
            "getTokenAccountBalance",
            self._client.get_token_account_balance(Pubkey.from_string(address)),
        )
        return int(resp.value.amount), int(resp.value.decimals)

    async def get_latest_blockhash(self) -> tuple[str, int]:
        """Recency marker: ``(blockhash, last_valid_block_height)``."""
        resp = await self._call("getLatestBlockhash", self._client.get_latest_blockhash())
        return str(resp.value.blockhash), int(resp.value.last_valid_block_height)

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict | None]:
        resp = await self._call(
            "getSignatureStatuses",
            self._client.get_signature_statuses([Signature.from_string(s) for s in signatures]),
        )
        return [
            None
            if status is None
            else {
                "confirmationStatus": _CONFIRMATION_NAMES.get(status.confirmation_status),
                "err": status.err,
            }
            for status in resp.value
        ]

    async def get_signatures_for_address(self, address: str, limit: int = 10) -> list[dict]:
        resp = await self._call(
            "getSignaturesForAddress",
            self._client.get_signatures_for_address(Pubkey.from_string(address), limit=limit),
        )
        return [
            {"signature": str(entry.signature), "blockTime": entry.block_time, "err": entry.err}
            for entry in resp.value
        ]

    async def get_transaction(self, signature: str) -> dict | None:
        """Transaction with status meta in the node's JSON layout, or ``None``."""
        resp = await self._call(
            "getTransaction",
            self._client.get_transaction(
                Signature.from_string(signature),
                encoding="json",
                max_supported_transaction_version=0,
            ),
        )
        if resp.value is None:
            return None
        return json.loads(resp.to_json()).get("result")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def send_transaction(self, raw: bytes) -> str:
        """Submit a signed, serialized transaction. Returns its signature."""
        resp = await self._call(
            "sendTransaction",
            self._client.send_raw_transaction(
                raw, opts=TxOpts(preflight_commitment=Commitment(self.commitment))
            ),
        )
        return str(resp.value)
