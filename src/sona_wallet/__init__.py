"""Sona Wallet: a chat-driven front-end core for a Solana wallet.

A user chats with the Sona assistant; messages such as
``send 2.5 SOL to <address>`` are turned into signed, broadcast and confirmed
on-chain transfers through an external signer.
"""

__version__ = "0.1.0"
