"""Storage of validator voting powers, statuses and double sign evidence."""

from __future__ import annotations

from typing import Any, Sequence

from stakeledger.types import (
    DatabaseError,
    DoubleSignEvidence,
    DoubleSignVote,
    ValidatorStatus,
    ValidatorVotingPower,
)
from stakeledger.validators import ValidatorStore


def _rows(count: int, width: int) -> str:
    row = "(" + ", ".join("?" * width) + ")"
    return ", ".join([row] * count)


class ValidatorEventStore(ValidatorStore):
    """Store that also keeps validator voting powers, statuses and misbehaviour evidence."""

    def save_validators_voting_powers(self, entries: Sequence[ValidatorVotingPower]) -> None:
        """Store the given voting powers, keeping for each validator the most recent one."""
        if not entries:
            return

        args: list[Any] = []
        for entry in entries:
            args.extend((entry.consensus_address, entry.voting_power, entry.height))

        self._execute(
            "INSERT INTO validator_voting_power (validator_address, voting_power, height) VALUES "
            + _rows(len(entries), 3)
            + """
ON CONFLICT (validator_address) DO UPDATE
    SET voting_power = excluded.voting_power,
        height = excluded.height
WHERE validator_voting_power.height <= excluded.height""",
            args,
            action="storing validators voting power",
        )

    def save_validators_statuses(self, statuses: Sequence[ValidatorStatus]) -> None:
        """Store the given statuses, keeping for each validator the most recent one."""
        if not statuses:
            return

        validator_args: list[Any] = []
        status_args: list[Any] = []
        for status in statuses:
            validator_args.extend((status.consensus_address, status.consensus_pubkey))
            status_args.extend(
                (
                    status.consensus_address,
                    status.status,
                    status.jailed,
                    status.tombstoned,
                    status.height,
                )
            )

        self._execute(
            "INSERT INTO validator (consensus_address, consensus_pubkey) VALUES "
            + _rows(len(statuses), 2)
            + " ON CONFLICT DO NOTHING",
            validator_args,
            action="storing validators",
        )
        self._execute(
            "INSERT INTO validator_status (validator_address, status, jailed, tombstoned, height) "
            "VALUES "
            + _rows(len(statuses), 5)
            + """
ON CONFLICT (validator_address) DO UPDATE
    SET status = excluded.status,
        jailed = excluded.jailed,
        tombstoned = excluded.tombstoned,
        height = excluded.height
WHERE validator_status.height <= excluded.height""",
            status_args,
            action="storing validators statuses",
        )

    def _save_double_sign_vote(self, vote: DoubleSignVote) -> int:
        """Store the vote and return its row id; raise if it was already stored."""
        cursor = self._execute(
            """INSERT INTO double_sign_vote
    (type, height, round, block_id, validator_address, validator_index, signature)
VALUES (?, ?, ?, ?, ?, ?, ?) ON CONFLICT DO NOTHING""",
            (
                vote.vote_type,
                vote.height,
                vote.round,
                vote.block_id,
                vote.validator_address,
                vote.validator_index,
                vote.signature,
            ),
            action="storing double sign vote",
        )
        if cursor.rowcount == 0 or cursor.lastrowid is None:
            raise DatabaseError("error while storing double sign vote: no rows in result set")
        return cursor.lastrowid

    def save_double_sign_evidence(self, evidence: DoubleSignEvidence) -> None:
        """Store both votes of the evidence and the evidence linking them."""
        vote_a = self._save_double_sign_vote(evidence.vote_a)
        vote_b = self._save_double_sign_vote(evidence.vote_b)
        self._execute(
            """INSERT INTO double_sign_evidence (height, vote_a_id, vote_b_id)
VALUES (?, ?, ?) ON CONFLICT DO NOTHING""",
            (evidence.height, vote_a, vote_b),
            action="storing double sign evidence",
        )