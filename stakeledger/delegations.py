"""Storage of delegations and redelegations."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterator, Sequence, TypeVar

from stakeledger.store import _db_time
from stakeledger.types import Coin, DatabaseError, Delegation, Redelegation, add_coins
from stakeledger.validator_events import ValidatorEventStore

# Upper bound on the bound parameters of a single statement.
_MAX_PARAMS = 999

_T = TypeVar("_T")


def _rows(count: int, width: int) -> str:
    row = "(" + ", ".join("?" * width) + ")"
    return ", ".join([row] * count)


def _batches(items: Sequence[_T], params_per_item: int) -> Iterator[Sequence[_T]]:
    """Split ``items`` so that each batch stays within the parameter limit."""
    size = max(1, _MAX_PARAMS // params_per_item)
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _coin_value(coin: Coin) -> str:
    """Render a coin as the text kept in the amount columns."""
    return json.dumps({"denom": coin.denom, "amount": str(coin.amount)})


def _coin_from_value(text: str) -> Coin:
    try:
        data = json.loads(text)
        return Coin(data["denom"], int(data["amount"]))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as err:
        raise DatabaseError(f"error while reading coin {text!r}: {err}") from err


class DelegationStore(ValidatorEventStore):
    """Store that also keeps delegations and redelegations."""

    def _sum_amounts(self, table: str, address: str) -> list[Coin]:
        rows = self.query(f"SELECT amount FROM {table} WHERE delegator_address = ?", address)
        amount: list[Coin] = []
        for row in rows:
            amount = add_coins(amount, _coin_from_value(row["amount"]))
        return amount

    def _save_delegator_accounts(self, addresses: list[str], what: str) -> None:
        try:
            self.save_accounts(addresses)
        except DatabaseError as err:
            raise DatabaseError(f"error while storing {what} accounts: {err}") from err

    # ------------------------------------------------------------------------------------------

    def save_delegations(self, delegations: Sequence[Delegation]) -> None:
        """Store the given delegations, keeping for each pair the most recent one.

        The validators must already be stored.
        """
        for batch in _batches(delegations, 4):
            try:
                self._store_up_to_date_delegations(batch)
            except DatabaseError as err:
                raise DatabaseError(
                    f"error while storing up-to-date delegations: {err}"
                ) from err

    def _store_up_to_date_delegations(self, delegations: Sequence[Delegation]) -> None:
        if not delegations:
            return

        accounts: list[str] = []
        args: list[Any] = []
        for delegation in delegations:
            accounts.append(delegation.delegator_address)
            try:
                cons_addr = self.get_validator_consensus_address(
                    delegation.validator_operator_address
                )
            except DatabaseError as err:
                raise DatabaseError(
                    f"error while gettting validator consensus address: {err}"
                ) from err
            args.extend(
                (
                    cons_addr,
                    delegation.delegator_address,
                    _coin_value(delegation.amount),
                    delegation.height,
                )
            )

        self._save_delegator_accounts(accounts, "delegators")

        self._execute(
            "INSERT INTO delegation (validator_address, delegator_address, amount, height) VALUES "
            + _rows(len(delegations), 4)
            + """
ON CONFLICT (delegator_address, validator_address)
DO UPDATE SET amount = excluded.amount, height = excluded.height
WHERE delegation.height <= excluded.height""",
            args,
            action="storing delegations",
        )

    def get_user_delegations_amount(self, address: str) -> list[Coin]:
        """Return the total of the delegations stored for the given delegator."""
        return self._sum_amounts("delegation", address)

    def delete_validator_delegations(self, val_oper_addr: str) -> None:
        """Remove every delegation made to the validator with the given operator address."""
        self._execute(
            """DELETE FROM delegation
WHERE validator_address IN (
    SELECT consensus_address FROM validator_info WHERE operator_address = ?
)""",
            (val_oper_addr,),
            action="deleting delegations for valdiator",
        )

    def delete_delegator_delegations(self, delegator: str) -> None:
        """Remove every delegation of the given delegator."""
        self._execute(
            "DELETE FROM delegation WHERE delegator_address = ?",
            (delegator,),
            action="deleting delegations for delegator",
        )

    def get_delegators(self) -> list[str]:
        """Return the addresses of all the current delegators."""
        rows = self.query("SELECT DISTINCT delegator_address FROM delegation")
        return [row["delegator_address"] for row in rows]

    # ------------------------------------------------------------------------------------------

    def save_redelegations(self, redelegations: Sequence[Redelegation]) -> None:
        """Store the given redelegations, keeping for each one the most recent height.

        The validators must already be stored.
        """
        for batch in _batches(redelegations, 6):
            try:
                self._store_up_to_date_redelegations(batch)
            except DatabaseError as err:
                raise DatabaseError(
                    f"error while storing up-to-date redelegations: {err}"
                ) from err

    def _consensus_address_of(self, operator_address: str) -> str:
        try:
            return self.get_validator(operator_address).consensus_address
        except DatabaseError as err:
            raise DatabaseError(f"error while getting validator: {err}") from err

    def _store_up_to_date_redelegations(self, redelegations: Sequence[Redelegation]) -> None:
        if not redelegations:
            return

        accounts: list[str] = []
        args: list[Any] = []
        for redelegation in redelegations:
            accounts.append(redelegation.delegator_address)
            src = self._consensus_address_of(redelegation.src_validator)
            dst = self._consensus_address_of(redelegation.dst_validator)
            args.extend(
                (
                    redelegation.delegator_address,
                    src,
                    dst,
                    _coin_value(redelegation.amount),
                    _db_time(redelegation.completion_time),
                    redelegation.height,
                )
            )

        self._save_delegator_accounts(accounts, "redelegators")

        self._execute(
            """INSERT INTO redelegation
    (delegator_address, src_validator_address, dst_validator_address, amount, completion_time, height)
VALUES """
            + _rows(len(redelegations), 6)
            + """
ON CONFLICT (delegator_address, src_validator_address, dst_validator_address, completion_time)
DO UPDATE SET height = excluded.height
WHERE redelegation.height <= excluded.height""",
            args,
            action="storing redelegations",
        )

    def get_user_redelegations_amount(self, address: str) -> list[Coin]:
        """Return the total of the redelegations stored for the given delegator."""
        return self._sum_amounts("redelegation", address)

    def delete_redelegation(self, redelegation: Redelegation) -> None:
        """Remove the given redelegation."""
        src = self._consensus_address_of(redelegation.src_validator)
        dst = self._consensus_address_of(redelegation.dst_validator)
        self._execute(
            """DELETE FROM redelegation
WHERE delegator_address = ?
  AND src_validator_address = ?
  AND dst_validator_address = ?
  AND completion_time = ?""",
            (redelegation.delegator_address, src, dst, _db_time(redelegation.completion_time)),
            action="deleting redelegations",
        )

    def delete_completed_redelegations(self, timestamp: datetime) -> None:
        """Remove every redelegation completed before the given time."""
        self._execute(
            "DELETE FROM redelegation WHERE completion_time < ?",
            (_db_time(timestamp),),
            action="deleting completed redelegations",
        )