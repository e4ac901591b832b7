"""In-memory stand-ins for the chain RPC node and the classification service."""

from __future__ import annotations

import asyncio
from collections import Counter

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import decode_transfer
from solders.transaction import Transaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import decode_transfer_checked, get_associated_token_address

from sona_wallet.chat.classifier import AssistantReply, ClassifierError, IntentClassifier
from sona_wallet.config import AppConfig
from sona_wallet.errors import NetworkFailure
from sona_wallet.wallet.assets import AssetRegistry

SONIC_MINT = "7rh23QToLTBmYxR5jDiRbUtqcGey4xjDeU9JmtX6QChe"
LAMPORTS = 1_000_000_000


def default_assets() -> AssetRegistry:
    return AssetRegistry.from_config(AppConfig().assets)


def token_account(owner: str, mint: str = SONIC_MINT) -> str:
    return str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint)))


def new_address() -> str:
    return str(Keypair().pubkey())


class FakeRpc:
    """Simulates the RPC methods the wallet uses, applying submitted transfers.

    ``outcome`` decides what happens to submitted transactions:
    ``"confirmed"`` applies them and reports them confirmed, ``"failed"``
    reports an on-chain error, ``"pending"`` never reports a status.
    """

    def __init__(self, outcome: str = "confirmed"):
        self.outcome = outcome
        self.lamports: dict[str, int] = {}
        self.tokens: dict[str, int] = {}       # token account -> raw amount
        self.token_decimals = 9
        self.statuses: dict[str, dict] = {}
        self.sent: list[Transaction] = []
        self.calls: Counter = Counter()
        self.failures: dict[str, list[Exception]] = {}
        self.gate: asyncio.Event | None = None  # holds get_balance replies while unset
        self.chain_history: dict[str, list[dict]] = {}  # address -> signature entries
        self.chain_transactions: dict[str, dict] = {}

    # -- setup helpers -------------------------------------------------

    def fund(self, address: str, sol: int | float = 0, sonic: int | None = None) -> None:
        self.lamports[address] = int(sol * LAMPORTS)
        if sonic is not None:
            self.tokens[token_account(address)] = sonic * LAMPORTS

    def fail_next(self, method: str, exc: Exception | None = None, times: int = 1) -> None:
        self.failures.setdefault(method, []).extend(
            [exc or NetworkFailure(f"{method} unreachable")] * times
        )

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    # -- RPC surface ---------------------------------------------------

    async def get_balance(self, address: str) -> int:
        self._enter("get_balance")
        # Answered at request time; the gate only delays delivery
        lamports = self.lamports.get(address, 0)
        if self.gate is not None:
            await self.gate.wait()
        return lamports

    async def get_account_info(self, address: str) -> dict | None:
        self._enter("get_account_info")
        if address in self.tokens or address in self.lamports:
            return {"lamports": 2039280, "owner": str(TOKEN_PROGRAM_ID)}
        return None

    async def get_token_account_balance(self, address: str) -> tuple[int, int]:
        self._enter("get_token_account_balance")
        return self.tokens[address], self.token_decimals

    async def get_latest_blockhash(self) -> tuple[str, int]:
        self._enter("get_latest_blockhash")
        return str(Hash.new_unique()), 1000

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict | None]:
        self._enter("get_signature_statuses")
        return [self.statuses.get(sig) for sig in signatures]

    async def get_signatures_for_address(self, address: str, limit: int = 10) -> list[dict]:
        self._enter("get_signatures_for_address")
        return self.chain_history.get(address, [])[:limit]

    async def get_transaction(self, signature: str) -> dict | None:
        self._enter("get_transaction")
        return self.chain_transactions.get(signature)

    async def send_transaction(self, raw: bytes) -> str:
        self._enter("send_transaction")
        tx = Transaction.from_bytes(raw)
        self.sent.append(tx)
        signature = str(tx.signatures[0])
        if self.outcome == "confirmed":
            self._apply(tx)
            self.statuses[signature] = {"confirmationStatus": "confirmed", "err": None}
        elif self.outcome == "failed":
            self.statuses[signature] = {
                "confirmationStatus": "processed",
                "err": {"InstructionError": [0, "Custom"]},
            }
        return signature

    async def close(self) -> None:
        pass

    def _apply(self, tx: Transaction) -> None:
        keys = tx.message.account_keys
        for compiled in tx.message.instructions:
            program = keys[compiled.program_id_index]
            ix = Instruction(
                program,
                bytes(compiled.data),
                [AccountMeta(keys[i], False, False) for i in bytes(compiled.accounts)],
            )
            if program == SYSTEM_PROGRAM_ID:
                params = decode_transfer(ix)
                sender, receiver = str(params["from_pubkey"]), str(params["to_pubkey"])
                self.lamports[sender] = self.lamports.get(sender, 0) - params["lamports"]
                self.lamports[receiver] = self.lamports.get(receiver, 0) + params["lamports"]
            elif program == ASSOCIATED_TOKEN_PROGRAM_ID:
                self.tokens.setdefault(str(ix.accounts[1].pubkey), 0)
            elif program == TOKEN_PROGRAM_ID:
                params = decode_transfer_checked(ix)
                self.tokens[str(params.source)] -= params.amount
                self.tokens[str(params.dest)] = self.tokens.get(str(params.dest), 0) + params.amount


class ScriptedClassifier(IntentClassifier):
    """Returns queued replies in order; an exception in the queue is raised."""

    def __init__(self, *replies: AssistantReply | Exception):
        self.replies = list(replies)
        self.calls: list[tuple[list, object]] = []

    async def classify(self, history, wallet_context=None) -> AssistantReply:
        self.calls.append((list(history), wallet_context))
        if not self.replies:
            raise ClassifierError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply
