"""
Chain client contract consumed by the mint saga, plus the HTTP relay
implementation used in deployment.

The relay is a thin service in front of the chain node that holds the
minter key. It exposes two JSON endpoints:

    POST {base}/mint          {"wallet", "metadataUri"} -> {"txHash"}
    GET  {base}/tx/{txHash}                              -> {"status", "tokenId"?}
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from storymint.core.config import CHAIN_RPC_URL, CHAIN_TIMEOUT

log = logging.getLogger("storymint.chain")


class TxStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass(frozen=True)
class TxReceipt:
    status: str
    token_id: Optional[str] = None


class ChainClientError(Exception):
    """Submission or status lookup could not be completed."""


class ChainClient(abc.ABC):

    @abc.abstractmethod
    async def submit_mint(self, wallet: str, metadata_uri: str) -> str:
        """Submits a mint transaction and returns its hash."""

    @abc.abstractmethod
    async def check_tx_status(self, tx_hash: str) -> TxReceipt:
        """Reports the on-chain status of a previously submitted transaction."""


class HttpChainClient(ChainClient):

    def __init__(
        self,
        base_url: str = CHAIN_RPC_URL,
        timeout: float = CHAIN_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    async def submit_mint(self, wallet: str, metadata_uri: str) -> str:
        try:
            async with self._client() as client:
                response = await client.post("/mint", json={"wallet": wallet, "metadataUri": metadata_uri})
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise ChainClientError(f"Mint submission failed: {e}") from e

        tx_hash = body.get("txHash")
        if not tx_hash:
            raise ChainClientError("Mint submission returned no txHash")
        log.info(f"Mint submitted for {wallet}: {tx_hash}")
        return tx_hash

    async def check_tx_status(self, tx_hash: str) -> TxReceipt:
        try:
            async with self._client() as client:
                response = await client.get(f"/tx/{tx_hash}")
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise ChainClientError(f"Status lookup for {tx_hash} failed: {e}") from e

        token_id = body.get("tokenId")
        return TxReceipt(
            status=str(body.get("status", TxStatus.PENDING.value)),
            token_id=str(token_id) if token_id is not None else None,
        )
