"""
On-chain balance and allowance management for the copy bot.

Before trading on Polymarket the signing wallet must approve USDC.e
spending and conditional token transfers for the exchange contracts.

Required approvals:
- USDC.e: CTF, CTF Exchange and Neg Risk CTF Exchange (for buying)
- Conditional Tokens (CTF): both exchanges as operators (for selling)
"""

import logging
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3

from .config import (
    CONDITIONAL_TOKENS,
    CTF_EXCHANGE_ADDRESS,
    NEG_RISK_CTF_EXCHANGE,
    USDC_ADDRESS,
    Settings,
)
from .errors import InsufficientFundsError

logger = logging.getLogger(__name__)

# ERC20 ABI for approve, allowance, balanceOf and decimals
ERC20_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]

# Conditional Token Framework ABI for operator approvals
CTF_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "operator", "type": "address"},
            {"name": "approved", "type": "bool"},
        ],
        "name": "setApprovalForAll",
        "outputs": [],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "operator", "type": "address"},
        ],
        "name": "isApprovedForAll",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]

# Maximum uint256 for unlimited approval
MAX_UINT256 = 2**256 - 1

LOW_GAS_BALANCE = 0.05  # POL

GWEI = 10**9

USDC_SPENDERS = [
    ("CTF", CONDITIONAL_TOKENS),
    ("CTF Exchange", CTF_EXCHANGE_ADDRESS),
    ("Neg Risk CTF Exchange", NEG_RISK_CTF_EXCHANGE),
]

CTF_OPERATORS = [
    ("CTF Exchange", CTF_EXCHANGE_ADDRESS),
    ("Neg Risk CTF Exchange", NEG_RISK_CTF_EXCHANGE),
]


def compute_gas_overrides(
    priority_fee: Optional[int],
    max_fee: Optional[int],
    base_fee: Optional[int],
    min_priority_fee_gwei: float = 30,
    min_max_fee_gwei: float = 60,
) -> Dict[str, int]:
    """
    Build EIP-1559 fee fields with floors applied.

    All amounts are in wei. Polygon nodes tend to under-estimate the
    priority fee, so both fields are floored at the configured gwei values
    and max fee is never below 2 * baseFee + priority.
    """
    min_priority = int(min_priority_fee_gwei * GWEI)
    min_max_fee = int(min_max_fee_gwei * GWEI)

    priority = priority_fee or min_priority
    fee_cap = max_fee or min_max_fee

    if base_fee:
        fee_cap = max(fee_cap, base_fee * 2 + priority)

    priority = max(priority, min_priority)
    fee_cap = max(fee_cap, min_max_fee, priority)

    return {
        "maxPriorityFeePerGas": priority,
        "maxFeePerGas": fee_cap,
    }


class AllowanceManager:
    """
    Reads and sets the token approvals the signing wallet needs.

    All methods block on RPC; async callers run them in an executor.
    """

    def __init__(self, settings: Settings, w3: Optional[Web3] = None):
        self.settings = settings

        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(settings.rpc_url))
            if not w3.is_connected():
                raise ConnectionError(f"Failed to connect to RPC: {settings.rpc_url}")
        self.w3 = w3

        self.account = Account.from_key(settings.private_key)
        self.address = self.account.address

        self.usdc_contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(USDC_ADDRESS),
            abi=ERC20_ABI,
        )
        self.ctf_contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(CONDITIONAL_TOKENS),
            abi=CTF_ABI,
        )
        self._decimals: Optional[int] = None

        logger.info(f"AllowanceManager initialized for {self.address}")

    @property
    def decimals(self) -> int:
        if self._decimals is None:
            self._decimals = int(self.usdc_contract.functions.decimals().call())
        return self._decimals

    def to_units(self, amount: float) -> int:
        """Convert a human USDC amount to raw token units."""
        return int(round(amount * 10**self.decimals))

    def from_units(self, raw: int) -> float:
        return raw / 10**self.decimals

    def get_usdc_balance_raw(self) -> int:
        return int(self.usdc_contract.functions.balanceOf(self.address).call())

    def get_usdc_balance(self) -> float:
        """USDC.e balance in human-readable format."""
        return self.from_units(self.get_usdc_balance_raw())

    def get_pol_balance(self) -> float:
        """POL balance for gas."""
        balance_wei = self.w3.eth.get_balance(self.address)
        return float(self.w3.from_wei(balance_wei, "ether"))

    def get_usdc_allowance_raw(self, spender: str) -> int:
        return int(
            self.usdc_contract.functions.allowance(
                self.address,
                Web3.to_checksum_address(spender),
            ).call()
        )

    def check_ctf_approval(self, operator: str) -> bool:
        return bool(
            self.ctf_contract.functions.isApprovedForAll(
                self.address,
                Web3.to_checksum_address(operator),
            ).call()
        )

    def get_gas_overrides(self) -> Dict[str, int]:
        try:
            priority = int(self.w3.eth.max_priority_fee)
        except Exception as e:
            logger.debug(f"max_priority_fee unavailable: {e}")
            priority = None
        try:
            gas_price = int(self.w3.eth.gas_price)
        except Exception as e:
            logger.debug(f"gas_price unavailable: {e}")
            gas_price = None
        latest = self.w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas") if latest else None

        return compute_gas_overrides(
            priority or gas_price,
            gas_price,
            base_fee,
            self.settings.min_priority_fee_gwei,
            self.settings.min_max_fee_gwei,
        )

    def _send(self, fn, gas_overrides: Dict[str, int]) -> Dict[str, Any]:
        tx = fn.build_transaction({
            "from": self.address,
            "nonce": self.w3.eth.get_transaction_count(self.address),
            "chainId": self.settings.chain_id,
            **gas_overrides,
        })

        signed_tx = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        logger.info(f"Tx: {tx_hash.hex()}")

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        return {"tx_hash": tx_hash.hex(), "status": receipt["status"]}

    def approve_usdc(self, spender: str, gas_overrides: Dict[str, int]) -> Dict[str, Any]:
        """Approve unlimited USDC.e spending for a contract."""
        return self._send(
            self.usdc_contract.functions.approve(Web3.to_checksum_address(spender), MAX_UINT256),
            gas_overrides,
        )

    def approve_ctf(self, operator: str, gas_overrides: Dict[str, int]) -> Dict[str, Any]:
        """Approve an exchange as operator for conditional tokens."""
        return self._send(
            self.ctf_contract.functions.setApprovalForAll(Web3.to_checksum_address(operator), True),
            gas_overrides,
        )

    def ensure_approvals(self, min_allowance: float) -> List[Dict[str, Any]]:
        """
        Make sure every required approval is in place.

        USDC.e is approved (unlimited) to any spender whose allowance is below
        min_allowance. Waits for each receipt.

        Returns:
            List of transaction results
        """
        logger.info("Checking required token approvals (EOA mode)...")

        pol = self.get_pol_balance()
        if pol < LOW_GAS_BALANCE:
            logger.warning(f"Low POL for gas: {pol:.4f}")

        required = self.to_units(min_allowance)
        gas_overrides = self.get_gas_overrides()
        results = []

        for name, spender in USDC_SPENDERS:
            if self.get_usdc_allowance_raw(spender) < required:
                logger.info(f"Approving USDC.e to {name} ({spender})...")
                result = self.approve_usdc(spender, gas_overrides)
                results.append({"spender": name, "token": "USDC.e", **result})
                logger.info(f"USDC.e approved to {name}")
            else:
                logger.info(f"USDC.e already approved to {name}")

        for name, operator in CTF_OPERATORS:
            if not self.check_ctf_approval(operator):
                logger.info(f"Approving CTF for {name} ({operator})...")
                result = self.approve_ctf(operator, gas_overrides)
                results.append({"spender": name, "token": "CTF", **result})
                logger.info(f"CTF approved for {name}")
            else:
                logger.info(f"CTF already approved for {name}")

        return results

    def check_collateral(self, required_amount: float, exchange_address: str) -> None:
        """
        On-chain part of the pre-trade balance check.

        Raises:
            InsufficientFundsError: balance or an allowance is below required
        """
        required = self.to_units(required_amount)

        balance = self.get_usdc_balance_raw()
        if balance < required:
            raise InsufficientFundsError(
                f"not enough balance / allowance (USDC.e balance {self.from_units(balance)} "
                f"< required {required_amount})"
            )

        allowance_ctf = self.get_usdc_allowance_raw(CONDITIONAL_TOKENS)
        if allowance_ctf < required:
            raise InsufficientFundsError(
                f"not enough balance / allowance (USDC.e allowance to CTF "
                f"{self.from_units(allowance_ctf)} < required {required_amount})"
            )

        allowance_exchange = self.get_usdc_allowance_raw(exchange_address)
        if allowance_exchange < required:
            raise InsufficientFundsError(
                f"not enough balance / allowance (USDC.e allowance to Exchange "
                f"{self.from_units(allowance_exchange)} < required {required_amount})"
            )

        if not self.check_ctf_approval(exchange_address):
            logger.warning("CTF approval missing for exchange (required for SELLs)")
