"""Domain values stored and returned by the ledger store."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal, localcontext
from typing import Any, Iterable

DEC_PRECISION = 18
DO_NOT_MODIFY_DESC = "[do-not-modify]"

_DEC_QUANTUM = Decimal(1).scaleb(-DEC_PRECISION)
_DEC_RE = re.compile(r"-?(?:\d+(?:\.(\d+))?|\.(\d+))")
_DENOM_RE = re.compile(r"[a-zA-Z][a-zA-Z0-9/:._-]{2,127}")

_DESCRIPTION_LIMITS = {
    "moniker": 70,
    "identity": 3000,
    "website": 140,
    "security_contact": 140,
    "details": 280,
}


class DatabaseError(Exception):
    """Raised when the store cannot read or write its data."""


def parse_dec(text: str) -> Decimal:
    """Parse a fixed-point decimal string with at most 18 fractional digits."""
    match = _DEC_RE.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid decimal string: {text!r}")
    decimals = match.group(1) or match.group(2) or ""
    if len(decimals) > DEC_PRECISION:
        raise ValueError(
            f"too much precision in {text!r}: maximum {DEC_PRECISION} decimal places"
        )
    return Decimal(text)


def format_dec(value: Decimal | int | str) -> str:
    """Render a decimal with exactly 18 fractional digits."""
    if isinstance(value, str):
        value = parse_dec(value)
    dec = Decimal(value)
    if not dec.is_finite():
        raise ValueError(f"cannot format non-finite decimal {dec}")
    with localcontext() as ctx:
        ctx.prec = 200
        quantized = dec.quantize(_DEC_QUANTUM, rounding=ROUND_HALF_EVEN)
        if quantized == 0:
            quantized = abs(quantized)
    return format(quantized, "f")


@dataclass(frozen=True)
class Coin:
    """An amount of a single denomination."""

    denom: str
    amount: int

    def __post_init__(self) -> None:
        if not _DENOM_RE.fullmatch(self.denom):
            raise ValueError(f"invalid denom: {self.denom!r}")
        if self.amount < 0:
            raise ValueError(f"negative coin amount: {self.amount}")

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"


def add_coins(coins: Iterable[Coin], coin: Coin) -> list[Coin]:
    """Return the sum of ``coins`` and ``coin``, sorted by denom, without zero amounts."""
    totals: dict[str, int] = {}
    for item in (*coins, coin):
        totals[item.denom] = totals.get(item.denom, 0) + item.amount
    return [Coin(denom, amount) for denom, amount in sorted(totals.items()) if amount > 0]


@dataclass(frozen=True)
class Description:
    """Human readable details of a validator."""

    moniker: str = ""
    identity: str = ""
    website: str = ""
    security_contact: str = ""
    details: str = ""

    def ensure_length(self) -> Description:
        """Return this description, or raise ValueError if a field is too long."""
        for name, limit in _DESCRIPTION_LIMITS.items():
            length = len(getattr(self, name))
            if length > limit:
                raise ValueError(
                    f"invalid {name.replace('_', ' ')} length; got: {length}, max: {limit}"
                )
        return self

    def update_description(self, other: Description) -> Description:
        """Merge ``other`` into this description, keeping fields marked as not to be modified."""
        merged = {
            f.name: getattr(self, f.name)
            if getattr(other, f.name) == DO_NOT_MODIFY_DESC
            else getattr(other, f.name)
            for f in fields(self)
        }
        return Description(**merged).ensure_length()


@dataclass(frozen=True)
class Validator:
    consensus_address: str
    operator_address: str
    consensus_pubkey: str
    self_delegate_address: str
    max_change_rate: Decimal
    max_rate: Decimal
    height: int


@dataclass(frozen=True)
class ValidatorDescription:
    operator_address: str
    description: Description
    avatar_url: str
    height: int


@dataclass(frozen=True)
class ValidatorCommission:
    validator_address: str
    commission: Decimal | None
    min_self_delegation: int | None
    height: int


@dataclass(frozen=True)
class ValidatorVotingPower:
    consensus_address: str
    voting_power: int
    height: int


@dataclass(frozen=True)
class ValidatorStatus:
    consensus_address: str
    consensus_pubkey: str
    status: int
    jailed: bool
    tombstoned: bool
    height: int


@dataclass(frozen=True)
class DoubleSignVote:
    vote_type: int
    height: int
    round: int
    block_id: str
    validator_address: str
    validator_index: int
    signature: str


@dataclass(frozen=True)
class DoubleSignEvidence:
    height: int
    vote_a: DoubleSignVote
    vote_b: DoubleSignVote


@dataclass(frozen=True)
class Delegation:
    delegator_address: str
    validator_operator_address: str
    amount: Coin
    height: int


@dataclass(frozen=True)
class Redelegation:
    delegator_address: str
    src_validator: str
    dst_validator: str
    amount: Coin
    completion_time: datetime
    height: int


@dataclass(frozen=True)
class UnbondingDelegation:
    delegator_address: str
    validator_operator_address: str
    amount: Coin
    completion_timestamp: datetime
    height: int


@dataclass(frozen=True)
class TokenUnit:
    denom: str
    exponent: int
    aliases: tuple[str, ...] = ()
    price_id: str | None = None


@dataclass(frozen=True)
class Token:
    name: str
    units: tuple[TokenUnit, ...] = ()


@dataclass(frozen=True)
class TokenPrice:
    unit_name: str
    price: float
    market_cap: int
    timestamp: datetime


@dataclass(frozen=True)
class ValidatorSigningInfo:
    validator_address: str
    start_height: int
    index_offset: int
    jailed_until: datetime
    tombstoned: bool
    missed_blocks_counter: int
    height: int


@dataclass(frozen=True)
class MintParams:
    params: dict[str, Any] = field(default_factory=dict)
    height: int = 0


@dataclass(frozen=True)
class SlashingParams:
    params: dict[str, Any] = field(default_factory=dict)
    height: int = 0


@dataclass(frozen=True)
class StakingParams:
    params: dict[str, Any] = field(default_factory=dict)
    height: int = 0


@dataclass(frozen=True)
class Pool:
    bonded_tokens: int
    not_bonded_tokens: int
    height: int