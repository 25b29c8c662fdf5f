"""Local keypair signer for venue transactions."""

import base64
import json
from pathlib import Path
from typing import Union

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from trade_agent.execution.base import Signer
from trade_agent.utils.exceptions import ConfigurationError
from trade_agent.utils.logging import get_logger
from trade_agent.venue.base import SwapTransaction

logger = get_logger(__name__)


class KeypairSigner(Signer):
    """Signs versioned transactions with an in-memory solders Keypair.

    Example:
        >>> signer = KeypairSigner.from_file("~/.config/solana/id.json")
        >>> signed = await signer.sign(swap_tx)
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "KeypairSigner":
        """Load a keypair from a Solana CLI JSON file (array of 64 ints).

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Keypair file not found: {path}")
        try:
            key_bytes = bytes(json.loads(path.read_text()))
            keypair = Keypair.from_bytes(key_bytes)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid keypair file {path}: {e}") from e
        logger.info("Loaded keypair for %s", keypair.pubkey())
        return cls(keypair)

    @classmethod
    def from_base58(cls, private_key: str) -> "KeypairSigner":
        """Load a keypair from a base58-encoded secret key."""
        try:
            keypair = Keypair.from_base58_string(private_key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid base58 private key: {e}") from e
        return cls(keypair)

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    async def sign(self, transaction: SwapTransaction) -> bytes:
        raw = VersionedTransaction.from_bytes(base64.b64decode(transaction.transaction))
        signed = VersionedTransaction(raw.message, [self._keypair])
        return bytes(signed)
