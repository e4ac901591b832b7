"""Transaction builder: turns a validated intent into an unsigned transaction."""

from __future__ import annotations

import logging

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from sona_wallet.errors import BuildError, NetworkFailure, RpcError
from sona_wallet.wallet.assets import Asset, AssetRegistry
from sona_wallet.wallet.models import Intent, UnsignedTransaction
from sona_wallet.wallet.rpc import SolanaRpcClient

logger = logging.getLogger("sona_wallet.wallet.builder")


class TransactionBuilder:
    """Builds native and SPL token transfers.

    Every chain lookup failure surfaces as :class:`BuildError`; the caller
    decides whether to retry (at most once, since blockhashes expire fast).
    """

    def __init__(self, rpc: SolanaRpcClient, assets: AssetRegistry):
        self.rpc = rpc
        self.assets = assets

    async def build(self, intent: Intent, sender: str) -> UnsignedTransaction:
        asset = self.assets.get(intent.asset)
        payer = Pubkey.from_string(sender)
        recipient = Pubkey.from_string(intent.recipient)
        amount = asset.to_minor(intent.amount)

        try:
            if asset.is_native:
                instructions = [
                    transfer(
                        TransferParams(from_pubkey=payer, to_pubkey=recipient, lamports=amount)
                    )
                ]
            else:
                instructions = await self._token_transfer(asset, payer, recipient, amount)
            blockhash, last_valid = await self.rpc.get_latest_blockhash()
        except (NetworkFailure, RpcError) as exc:
            raise BuildError(f"Could not build {intent.describe()}: {exc}") from exc

        message = Message.new_with_blockhash(instructions, payer, Hash.from_string(blockhash))
        logger.info(
            f"Built {intent.describe()} ({len(instructions)} instruction(s), "
            f"blockhash {blockhash}, valid until height {last_valid})"
        )
        return UnsignedTransaction(
            transaction=Transaction.new_unsigned(message),
            blockhash=blockhash,
            last_valid_block_height=last_valid,
            instruction_count=len(instructions),
        )

    async def _token_transfer(
        self, asset: Asset, payer: Pubkey, recipient: Pubkey, amount: int
    ) -> list[Instruction]:
        mint = Pubkey.from_string(asset.mint)
        source = get_associated_token_address(payer, mint)
        destination = get_associated_token_address(recipient, mint)

        instructions: list[Instruction] = []
        if await self.rpc.get_account_info(str(destination)) is None:
            logger.info(f"Recipient has no {asset.symbol} account; creating {destination}")
            instructions.append(create_associated_token_account(payer, recipient, mint))
        instructions.append(
            transfer_checked(
                TransferCheckedParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=source,
                    mint=mint,
                    dest=destination,
                    owner=payer,
                    amount=amount,
                    decimals=asset.decimals,
                )
            )
        )
        return instructions
