"""
chain.py
=========
In-process stand-in for the execution host.

Holds the token ledger, a clock and a registry of deployed contracts, and
hands out ``Transaction`` wrappers so a sequence of calls commits or rolls
back as one unit. Every state-changing call takes the caller's address as
its first argument, standing in for ``msg.sender``.

All amounts are unsigned 256-bit integers: a negative amount, an amount
above ``MAX_UINT256``, an overflow or an underflow raises ``Revert``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from eth_utils import is_address, keccak, to_normalized_address

from config import get_logger
from errors import Revert
from transaction import Transaction

logger = get_logger(__name__)

MAX_UINT256 = 2**256 - 1
ZERO_ADDRESS = "0x" + "00" * 20


def derive_address(label: str) -> str:
    """Deterministic address for a human label (actors, tokens, pairs)."""
    return to_normalized_address("0x" + keccak(text=label)[-20:].hex())


def normalize(address: str) -> str:
    if not is_address(address):
        raise ValueError(f"not an address: {address!r}")
    return to_normalized_address(address)


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise Revert(f"amount must be an integer, got {amount!r}")
    if amount < 0 or amount > MAX_UINT256:
        raise Revert(f"amount out of uint256 range: {amount}")
    return amount


# ─────────────────────────────────────────────────────────────────────────────
# LEDGER
# ─────────────────────────────────────────────────────────────────────────────


class Ledger:
    """Balances, allowances and total supply for every token."""

    def __init__(self) -> None:
        self.balances: Dict[str, Dict[str, int]] = {}
        self.allowances: Dict[str, Dict[Tuple[str, str], int]] = {}
        self.total_supply: Dict[str, int] = {}

    def balance_of(self, token: str, holder: str) -> int:
        return self.balances.get(token, {}).get(holder, 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get(token, {}).get((owner, spender), 0)

    def set_allowance(self, token: str, owner: str, spender: str, amount: int) -> None:
        _check_amount(amount)
        self.allowances.setdefault(token, {})[(owner, spender)] = amount

    def move(self, token: str, src: str, dst: str, amount: int) -> None:
        _check_amount(amount)
        held = self.balance_of(token, src)
        if held < amount:
            raise Revert(f"insufficient balance: {src} holds {held} of {token}, needs {amount}")
        book = self.balances.setdefault(token, {})
        book[src] = held - amount
        book[dst] = _check_amount(book.get(dst, 0) + amount)

    def mint(self, token: str, to: str, amount: int) -> None:
        _check_amount(amount)
        supply = _check_amount(self.total_supply.get(token, 0) + amount)
        book = self.balances.setdefault(token, {})
        book[to] = book.get(to, 0) + amount
        self.total_supply[token] = supply

    def burn(self, token: str, holder: str, amount: int) -> None:
        _check_amount(amount)
        held = self.balance_of(token, holder)
        if held < amount:
            raise Revert(f"burn exceeds balance: {holder} holds {held} of {token}")
        self.balances[token][holder] = held - amount
        self.total_supply[token] -= amount

    def is_consistent(self) -> bool:
        for token, book in self.balances.items():
            if any(v < 0 for v in book.values()):
                return False
            if sum(book.values()) != self.total_supply.get(token, 0):
                return False
        return True


# ─────────────────────────────────────────────────────────────────────────────
# TOKEN HANDLE
# ─────────────────────────────────────────────────────────────────────────────


class Token:
    """ERC-20 style view over one token's slice of the ledger."""

    def __init__(self, chain: "Chain", address: str, symbol: str = "", decimals: int = 18) -> None:
        self.chain = chain
        self.address = address
        self.symbol = symbol or address[:10]
        self.decimals = decimals

    def __repr__(self) -> str:
        return f"Token({self.symbol}, {self.address})"

    @property
    def _ledger(self) -> Ledger:
        return self.chain.ledger

    def balance_of(self, holder: str) -> int:
        return self._ledger.balance_of(self.address, holder)

    def allowance(self, owner: str, spender: str) -> int:
        return self._ledger.allowance(self.address, owner, spender)

    def total_supply(self) -> int:
        return self._ledger.total_supply.get(self.address, 0)

    def approve(self, sender: str, spender: str, amount: int) -> bool:
        self._ledger.set_allowance(self.address, sender, spender, amount)
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._ledger.move(self.address, sender, to, amount)
        return True

    def transfer_from(self, sender: str, owner: str, to: str, amount: int) -> bool:
        _check_amount(amount)
        allowed = self.allowance(owner, sender)
        if allowed < amount:
            raise Revert(
                f"insufficient allowance: {sender} may pull {allowed} of {self.symbol} from {owner}, needs {amount}"
            )
        self._ledger.move(self.address, owner, to, amount)
        if allowed != MAX_UINT256:
            self._ledger.set_allowance(self.address, owner, sender, allowed - amount)
        return True

    # Privileged: only the simulation setup and the token's own issuer call these.
    def mint(self, to: str, amount: int) -> None:
        self._ledger.mint(self.address, to, amount)

    def burn(self, holder: str, amount: int) -> None:
        self._ledger.burn(self.address, holder, amount)

    def units(self, whole: int) -> int:
        """Whole tokens -> smallest units."""
        return whole * 10 ** self.decimals


# ─────────────────────────────────────────────────────────────────────────────
# CHAIN
# ─────────────────────────────────────────────────────────────────────────────


class Chain:
    """Ledger + clock + contract registry."""

    def __init__(self, timestamp: int = 0) -> None:
        self.ledger = Ledger()
        self.now = timestamp
        self._contracts: Dict[str, Any] = {}
        self._tokens: Dict[str, Token] = {}

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now

    def deploy(self, contract: Any) -> Any:
        address = normalize(contract.address)
        if address in self._contracts:
            raise Revert(f"address already in use: {address}")
        self._contracts[address] = contract
        logger.debug("deployed %s at %s", type(contract).__name__, address)
        return contract

    def contract_at(self, address: str) -> Any:
        contract = self._contracts.get(normalize(address))
        if contract is None:
            raise Revert(f"no contract at {address}")
        return contract

    def create_token(self, symbol: str, decimals: int = 18, address: Optional[str] = None) -> Token:
        address = normalize(address) if address else derive_address(f"token:{symbol}")
        if address in self._tokens:
            raise Revert(f"token already exists at {address}")
        token = Token(self, address, symbol=symbol, decimals=decimals)
        self._tokens[address] = token
        return token

    def token(self, address: str) -> Token:
        token = self._tokens.get(normalize(address))
        if token is None:
            raise Revert(f"unknown token {address}")
        return token

    def has_token(self, address: str) -> bool:
        return is_address(address) and to_normalized_address(address) in self._tokens

    def tokens(self) -> Dict[str, Token]:
        return dict(self._tokens)

    def atomic(self, name: str) -> Transaction:
        """A transaction over the whole ledger."""
        return Transaction(
            objects=[self.ledger],
            name=name,
            post_check=self.ledger.is_consistent,
        )
