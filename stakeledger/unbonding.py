"""Storage of unbonding delegations and of delegators whose balance must be refreshed."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Sequence

from stakeledger.delegations import DelegationStore, _batches, _coin_value, _rows
from stakeledger.store import _db_time
from stakeledger.types import Coin, DatabaseError, UnbondingDelegation


class Db(DelegationStore):
    """Complete store of chain state, including unbonding delegations."""

    def save_unbonding_delegations(self, delegations: Sequence[UnbondingDelegation]) -> None:
        """Store the given unbonding delegations, keeping for each one the most recent height.

        The validators must already be stored.
        """
        for batch in _batches(delegations, 5):
            try:
                self._store_up_to_date_unbonding_delegations(batch)
            except DatabaseError as err:
                raise DatabaseError(
                    f"error while storing up-to-date undonding delegations: {err}"
                ) from err

    def _store_up_to_date_unbonding_delegations(
        self, delegations: Sequence[UnbondingDelegation]
    ) -> None:
        if not delegations:
            return

        accounts: list[str] = []
        args: list[Any] = []
        for delegation in delegations:
            accounts.append(delegation.delegator_address)
            cons_addr = self._consensus_address_of(delegation.validator_operator_address)
            args.extend(
                (
                    cons_addr,
                    delegation.delegator_address,
                    _coin_value(delegation.amount),
                    _db_time(delegation.completion_timestamp),
                    delegation.height,
                )
            )

        self._save_delegator_accounts(accounts, "unbonding delegators")

        self._execute(
            """INSERT INTO unbonding_delegation
    (validator_address, delegator_address, amount, completion_timestamp, height)
VALUES """
            + _rows(len(delegations), 5)
            + """
ON CONFLICT (delegator_address, validator_address, completion_timestamp)
DO UPDATE SET height = excluded.height
WHERE unbonding_delegation.height <= excluded.height""",
            args,
            action="storing unbonding delegations",
        )

    def get_user_unbonding_delegations_amount(self, address: str) -> list[Coin]:
        """Return the total of the unbonding delegations stored for the given delegator."""
        return self._sum_amounts("unbonding_delegation", address)

    def delete_unbonding_delegation(self, delegation: UnbondingDelegation) -> None:
        """Remove the given unbonding delegation."""
        cons_addr = self._consensus_address_of(delegation.validator_operator_address)
        self._execute(
            """DELETE FROM unbonding_delegation
WHERE delegator_address = ?
  AND validator_address = ?
  AND completion_timestamp = ?""",
            (
                delegation.delegator_address,
                cons_addr,
                _db_time(delegation.completion_timestamp),
            ),
            action="deleting unbonding delegation",
        )

    def delete_completed_unbonding_delegations(self, timestamp: datetime) -> None:
        """Remove every unbonding delegation completed before the given time."""
        self._execute(
            "DELETE FROM unbonding_delegation WHERE completion_timestamp < ?",
            (_db_time(timestamp),),
            action="deleting completed unbonding delegations",
        )

    # ------------------------------------------------------------------------------------------

    def save_delegators_to_refresh(self, height: int, delegators: Sequence[str]) -> None:
        """Mark the given delegators as to be refreshed on the block after ``height``."""
        for batch in _batches(delegators, 2):
            args: list[Any] = []
            for delegator in batch:
                args.extend((delegator, height))
            self._execute(
                "INSERT INTO delegators_to_refresh (address, height) VALUES "
                + _rows(len(batch), 2)
                + """
ON CONFLICT (address)
DO UPDATE SET height = excluded.height
WHERE delegators_to_refresh.height <= excluded.height""",
                args,
                action="storing delegators to refresh",
            )

    def delete_delegators_to_refresh(self, height: int) -> list[str]:
        """Remove and return the delegators marked at a height lower than the given one."""
        try:
            with self._conn:
                rows = self._conn.execute(
                    "SELECT address FROM delegators_to_refresh WHERE height < ? ORDER BY rowid",
                    (height,),
                ).fetchall()
                self._conn.execute(
                    "DELETE FROM delegators_to_refresh WHERE height < ?", (height,)
                )
        except sqlite3.Error as err:
            raise DatabaseError(f"error while deleting delegators to refresh: {err}") from err
        return [row["address"] for row in rows]