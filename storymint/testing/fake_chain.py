from typing import List, Optional, Sequence, Tuple

from storymint.chain.client import ChainClient, TxReceipt, TxStatus


class FakeChainClient(ChainClient):
    """
    Scripted chain for tests and local runs without a node. Status checks
    walk through `statuses`; the last entry repeats once the script runs out.
    """

    def __init__(self, statuses: Sequence[str] = (TxStatus.CONFIRMED.value,), token_id: str = "1"):
        self.submissions: List[Tuple[str, str]] = []
        self.status_checks: List[str] = []
        self.token_id = token_id
        self.submit_error: Optional[Exception] = None
        self._statuses = list(statuses)

    async def submit_mint(self, wallet: str, metadata_uri: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submissions.append((wallet, metadata_uri))
        return "0x" + format(len(self.submissions), "064x")

    async def check_tx_status(self, tx_hash: str) -> TxReceipt:
        self.status_checks.append(tx_hash)
        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        token_id = self.token_id if status == TxStatus.CONFIRMED.value else None
        return TxReceipt(status=status, token_id=token_id)
