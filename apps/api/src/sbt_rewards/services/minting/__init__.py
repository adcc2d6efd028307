"""Minting pipeline exports."""

from .blockchain import (  # noqa: F401
    BlockchainClient,
    JsonRpcBlockchainClient,
    RpcError,
    TransactionReceipt,
)
from .content_storage import (  # noqa: F401
    ContentStorageClient,
    ContentStorageError,
    PinataClient,
    gateway_url,
    ipfs_uri,
)
from .failures import classify_error, is_retryable  # noqa: F401
from .networks import NETWORKS, NetworkInfo, explorer_tx_url, get_network  # noqa: F401
from .pipeline import MintingPipeline  # noqa: F401
from .signer import RpcAccountSigner, WalletSigner  # noqa: F401
