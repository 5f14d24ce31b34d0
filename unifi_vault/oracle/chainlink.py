"""Chainlink aggregator price feed.

Wraps `AggregatorV3Interface.latestRoundData()`.
See `AggregatorV3Interface <https://github.com/smartcontractkit/chainlink/blob/develop/contracts/src/v0.8/interfaces/AggregatorV3Interface.sol>`__.

Example:

.. code-block:: python

    web3 = Web3(HTTPProvider(os.environ["JSON_RPC_ETHEREUM"]))
    # USDC / USD on Ethereum mainnet
    oracle = ChainlinkPriceOracle(web3, "0x8fFfFfd4AfB6115b954Bd326cbe7B4BA576818f6")
    reading = oracle.latest_price()
    print(f"{oracle.description} is {reading.human_price}, updated {reading.update_time}")
"""

import logging
from dataclasses import dataclass
from functools import cached_property

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from unifi_vault.errors import ExternalCallFailure
from unifi_vault.oracle.base import PriceReading


logger = logging.getLogger(__name__)


#: The subset of the aggregator ABI we call
AGGREGATOR_V3_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "description",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "latestRoundData",
        "outputs": [
            {"internalType": "uint80", "name": "roundId", "type": "uint80"},
            {"internalType": "int256", "name": "answer", "type": "int256"},
            {"internalType": "uint256", "name": "startedAt", "type": "uint256"},
            {"internalType": "uint256", "name": "updatedAt", "type": "uint256"},
            {"internalType": "uint80", "name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass
class ChainLinkLatestRoundData:
    """Raw `latestRoundData()` response."""

    #: Current round id
    round_id: int

    #: Price, non-decimal converted
    answer: int

    #: When processing started
    started_at: int

    #: When price was updated last time
    updated_at: int

    #: Which round gave the answer
    answered_in_round: int


class ChainlinkPriceOracle:
    """Read the latest price from a Chainlink aggregator contract."""

    def __init__(self, web3: Web3, aggregator_address: HexAddress | str):
        self.web3 = web3
        self.aggregator_address = Web3.to_checksum_address(aggregator_address)

    def __repr__(self):
        return f"<ChainlinkPriceOracle {self.aggregator_address}>"

    @cached_property
    def aggregator(self) -> Contract:
        return self.web3.eth.contract(address=self.aggregator_address, abi=AGGREGATOR_V3_ABI)

    @cached_property
    def decimals(self) -> int:
        """How many decimals the aggregator has been configured for."""
        return self.aggregator.functions.decimals().call()

    @cached_property
    def description(self) -> str:
        """Chainlink provided description of this feed"""
        return self.aggregator.functions.description().call()

    def fetch_round_data(self) -> ChainLinkLatestRoundData:
        try:
            data = self.aggregator.functions.latestRoundData().call()
        except Exception as e:
            raise ExternalCallFailure(f"latestRoundData() failed on {self.aggregator_address}: {e}") from e
        return ChainLinkLatestRoundData(*data)

    def latest_price(self) -> PriceReading:
        round_data = self.fetch_round_data()
        if round_data.answer < 0:
            raise ExternalCallFailure(f"Negative answer {round_data.answer} from {self.aggregator_address}")
        logger.debug("Chainlink %s round %d answer %d updated at %d", self.aggregator_address, round_data.round_id, round_data.answer, round_data.updated_at)
        return PriceReading(round_data.answer, self.decimals, round_data.updated_at)
