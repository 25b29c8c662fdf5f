"""Unit tests for KeypairSigner."""

import base64
import json

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.null_signer import NullSigner
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from trade_agent.execution.signer import KeypairSigner
from trade_agent.utils.exceptions import ConfigurationError
from trade_agent.venue.base import SwapTransaction


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


def unsigned_swap(payer: Keypair) -> SwapTransaction:
    """A venue-style base64 transaction with an empty signature slot."""
    instruction = transfer(
        TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1_000)
    )
    message = MessageV0.try_compile(payer.pubkey(), [instruction], [], Hash.default())
    transaction = VersionedTransaction(message, [NullSigner(payer.pubkey())])
    return SwapTransaction(transaction=base64.b64encode(bytes(transaction)).decode())


class TestKeypairSigner:
    """Test cases for KeypairSigner."""

    def test_from_file(self, tmp_path, keypair) -> None:
        path = tmp_path / "id.json"
        path.write_text(json.dumps(list(bytes(keypair))))

        signer = KeypairSigner.from_file(path)

        assert signer.public_key == str(keypair.pubkey())

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            KeypairSigner.from_file(tmp_path / "missing.json")

    @pytest.mark.parametrize("content", ["not json", "[1, 2, 3]", '{"key": 1}'])
    def test_malformed_file(self, tmp_path, content) -> None:
        path = tmp_path / "id.json"
        path.write_text(content)

        with pytest.raises(ConfigurationError, match="Invalid keypair file"):
            KeypairSigner.from_file(path)

    def test_from_base58(self, keypair) -> None:
        signer = KeypairSigner.from_base58(str(keypair))

        assert signer.public_key == str(keypair.pubkey())

    @pytest.mark.asyncio
    async def test_sign(self, keypair) -> None:
        signed_bytes = await KeypairSigner(keypair).sign(unsigned_swap(keypair))

        signed = VersionedTransaction.from_bytes(signed_bytes)
        signature = signed.signatures[0]
        assert signature.verify(keypair.pubkey(), to_bytes_versioned(signed.message))
