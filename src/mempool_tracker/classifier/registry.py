"""Static registry of known DEX contracts and method selectors.

All tables are keyed by lower-cased hex strings and exposed read-only.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from mempool_tracker.classifier.models import TransactionType

CONSTRUCTOR_PREAMBLE = "0x60806040"


@dataclass(frozen=True)
class RouterInfo:
    name: str
    chain: str


@dataclass(frozen=True)
class MethodInfo:
    name: str
    type: TransactionType


KNOWN_ROUTERS: Mapping[str, RouterInfo] = MappingProxyType(
    {
        "0x7a250d5630b4cf539739df2c5dacb4c659f2488d": RouterInfo("Uniswap V2 Router", "ethereum"),
        "0xe592427a0aece92de3edee1f18e0157c05861564": RouterInfo("Uniswap V3 Router", "ethereum"),
        "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45": RouterInfo(
            "Uniswap Universal Router", "ethereum"
        ),
        "0x10ed43c718714eb63d5aa57b78b54704e256024e": RouterInfo("PancakeSwap Router", "bsc"),
        "0x1b02da8cb0d097eb8d57a175b88c7d8b47997506": RouterInfo("SushiSwap Router", "ethereum"),
    }
)

FACTORY_ADDRESSES: Mapping[str, str] = MappingProxyType(
    {
        "0x5c69bee701ef814a2b6a3edd4b1652cb9cc5aa6f": "Uniswap V2 Factory",
        "0x1f98431c8ad98523631ae4a59f267346ea31f984": "Uniswap V3 Factory",
        "0xca143ce32fe78f1f7019d7d551a6402fc5350c73": "PancakeSwap Factory",
        "0xc35dadb65012ec5796536bd9864ed8773abc74c4": "SushiSwap Factory",
    }
)

METHOD_SIGNATURES: Mapping[str, MethodInfo] = MappingProxyType(
    {
        "0x60806040": MethodInfo("Contract Creation", TransactionType.CONTRACT_DEPLOY),
        "0xf305d719": MethodInfo("addLiquidityETH", TransactionType.ADD_LIQUIDITY),
        "0xe8e33700": MethodInfo("addLiquidity", TransactionType.ADD_LIQUIDITY),
        "0x4bb278f3": MethodInfo("addLiquidityAVAX", TransactionType.ADD_LIQUIDITY),
        "0x7ff36ab5": MethodInfo("swapExactETHForTokens", TransactionType.SWAP),
        "0x18cbafe5": MethodInfo("swapExactTokensForETH", TransactionType.SWAP),
        "0x38ed1739": MethodInfo("swapExactTokensForTokens", TransactionType.SWAP),
        "0x8803dbee": MethodInfo("swapTokensForExactTokens", TransactionType.SWAP),
        "0xfb3bdb41": MethodInfo("swapETHForExactTokens", TransactionType.SWAP),
        "0x5c11d795": MethodInfo(
            "swapExactTokensForTokensSupportingFeeOnTransferTokens", TransactionType.SWAP
        ),
        "0xb6f9de95": MethodInfo(
            "swapExactETHForTokensSupportingFeeOnTransferTokens", TransactionType.SWAP
        ),
        "0xa9059cbb": MethodInfo("transfer", TransactionType.TOKEN_TRANSFER),
        "0x23b872dd": MethodInfo("transferFrom", TransactionType.TOKEN_TRANSFER),
        "0x095ea7b3": MethodInfo("approve", TransactionType.TOKEN_APPROVAL),
        "0x40c10f19": MethodInfo("mint", TransactionType.TOKEN_MINT),
        "0x1698ee82": MethodInfo("createPair", TransactionType.CREATE_PAIR),
    }
)

# keccak256 of the event signatures, checked against the first log topic.
PAIR_CREATED_TOPIC = "0x0d3648bd0f6ba80134a33ba9275ac585d9d315f0ad8355cddefde31afa28d0e9"
MINT_TOPIC = "0x4c209b5fc8ad50758f13e2e1088ba56a560dff690a1c6fef26394f4c03821c4f"
SWAP_TOPIC = "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# Priority order matters: a pair creation also emits transfers.
EVENT_TOPIC_TYPES: tuple[tuple[str, TransactionType], ...] = (
    (PAIR_CREATED_TOPIC, TransactionType.CREATE_PAIR),
    (MINT_TOPIC, TransactionType.ADD_LIQUIDITY),
    (SWAP_TOPIC, TransactionType.SWAP),
    (TRANSFER_TOPIC, TransactionType.TOKEN_TRANSFER),
)


def lookup_router(address: str | None) -> RouterInfo | None:
    if not address:
        return None
    return KNOWN_ROUTERS.get(address.lower())


def lookup_factory(address: str | None) -> str | None:
    if not address:
        return None
    return FACTORY_ADDRESSES.get(address.lower())


def lookup_method(selector: str | None) -> MethodInfo | None:
    if not selector:
        return None
    return METHOD_SIGNATURES.get(selector.lower())
