"""Storage of validators, their descriptions and their commissions."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Sequence

from stakeledger.store import Store
from stakeledger.types import (
    DO_NOT_MODIFY_DESC,
    DatabaseError,
    Description,
    Validator,
    ValidatorCommission,
    ValidatorDescription,
    format_dec,
    parse_dec,
)

_VALIDATOR_COLUMNS = """
    validator.consensus_address AS consensus_address,
    validator.consensus_pubkey AS consensus_pubkey,
    validator_info.operator_address AS operator_address,
    validator_info.self_delegate_address AS self_delegate_address,
    validator_info.max_change_rate AS max_change_rate,
    validator_info.max_rate AS max_rate,
    validator_info.height AS height
FROM validator
INNER JOIN validator_info ON validator.consensus_address = validator_info.consensus_address"""


def _rows(count: int, width: int) -> str:
    row = "(" + ", ".join("?" * width) + ")"
    return ", ".join([row] * count)


def _nullable(value: str | None) -> str | None:
    """Store blank strings as NULL."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def _validator_from_row(row: dict[str, Any]) -> Validator:
    return Validator(
        consensus_address=row["consensus_address"],
        operator_address=row["operator_address"],
        consensus_pubkey=row["consensus_pubkey"],
        self_delegate_address=row["self_delegate_address"] or "",
        max_change_rate=parse_dec(row["max_change_rate"]),
        max_rate=parse_dec(row["max_rate"]),
        height=row["height"],
    )


class ValidatorStore(Store):
    """Store that also keeps validators data, descriptions and commissions."""

    def save_validator_data(self, validator: Validator) -> None:
        """Store the data of a single validator."""
        self.save_validators_data([validator])

    def save_validators_data(self, validators: Sequence[Validator]) -> None:
        """Store the given validators, keeping for each one the most recent info."""
        if not validators:
            return

        self.save_accounts(v.self_delegate_address for v in validators)

        validator_args: list[Any] = []
        info_args: list[Any] = []
        for validator in validators:
            validator_args.extend((validator.consensus_address, validator.consensus_pubkey))
            info_args.extend(
                (
                    validator.consensus_address,
                    validator.operator_address,
                    validator.self_delegate_address,
                    format_dec(validator.max_change_rate),
                    format_dec(validator.max_rate),
                    validator.height,
                )
            )

        self._execute(
            "INSERT INTO validator (consensus_address, consensus_pubkey) VALUES "
            + _rows(len(validators), 2)
            + " ON CONFLICT DO NOTHING",
            validator_args,
            action="storing validators",
        )
        self._execute(
            """INSERT INTO validator_info
    (consensus_address, operator_address, self_delegate_address, max_change_rate, max_rate, height)
VALUES """
            + _rows(len(validators), 6)
            + """
ON CONFLICT (consensus_address) DO UPDATE
    SET consensus_address = excluded.consensus_address,
        operator_address = excluded.operator_address,
        self_delegate_address = excluded.self_delegate_address,
        max_change_rate = excluded.max_change_rate,
        max_rate = excluded.max_rate,
        height = excluded.height
WHERE validator_info.height <= excluded.height""",
            info_args,
            action="storing validator infos",
        )

    # ------------------------------------------------------------------------------------------

    def get_validator_consensus_address(self, address: str) -> str:
        """Return the consensus address of the validator with the given operator address."""
        rows = self.query(
            "SELECT consensus_address FROM validator_info WHERE operator_address = ?", address
        )
        if not rows:
            raise DatabaseError(
                "cannot find the consensus address of validator having operator address "
                f"{address}"
            )
        return rows[0]["consensus_address"]

    def get_validator_operator_address(self, cons_addr: str) -> str:
        """Return the operator address of the validator with the given consensus address."""
        rows = self.query(
            "SELECT operator_address FROM validator_info WHERE consensus_address = ?", cons_addr
        )
        if not rows:
            raise DatabaseError(
                "cannot find the operator address of validator having consensus address "
                f"{cons_addr}"
            )
        return rows[0]["operator_address"]

    def get_validator(self, val_address: str) -> Validator:
        """Return the validator with the given operator address."""
        rows = self.query(
            f"SELECT {_VALIDATOR_COLUMNS} WHERE validator_info.operator_address = ?",
            val_address,
        )
        if not rows:
            raise DatabaseError(f"no validator with validator address {val_address} could be found")
        return _validator_from_row(rows[0])

    def get_validators(self) -> list[Validator]:
        """Return every stored validator, ordered by consensus address."""
        rows = self.query(f"SELECT {_VALIDATOR_COLUMNS} ORDER BY validator.consensus_address")
        return [_validator_from_row(row) for row in rows]

    def get_validator_by_self_delegate_address(self, address: str) -> Validator:
        """Return the validator whose self delegate address is the given one."""
        rows = self.query(
            f"SELECT {_VALIDATOR_COLUMNS} WHERE validator_info.self_delegate_address = ?",
            address,
        )
        if not rows:
            raise DatabaseError(f"no validator with self delegate address {address} could be found")
        return _validator_from_row(rows[0])

    # ------------------------------------------------------------------------------------------

    def save_validator_description(self, description: ValidatorDescription) -> None:
        """Store a validator description, merging it with the one already stored."""
        cons_addr = self.get_validator_consensus_address(description.operator_address)
        des = description.description.ensure_length()

        avatar_url = description.avatar_url
        existing = self._get_validator_description(cons_addr)
        if existing is not None:
            des = existing.description.update_description(des)
            if description.avatar_url == DO_NOT_MODIFY_DESC:
                avatar_url = existing.avatar_url

        self._execute(
            """INSERT INTO validator_description (
    validator_address, moniker, identity, avatar_url, website, security_contact, details, height
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (validator_address) DO UPDATE
    SET moniker = excluded.moniker,
        identity = excluded.identity,
        avatar_url = excluded.avatar_url,
        website = excluded.website,
        security_contact = excluded.security_contact,
        details = excluded.details,
        height = excluded.height
WHERE validator_description.height <= excluded.height""",
            (
                _nullable(cons_addr),
                _nullable(des.moniker),
                _nullable(des.identity),
                _nullable(avatar_url),
                _nullable(des.website),
                _nullable(des.security_contact),
                _nullable(des.details),
                description.height,
            ),
            action="storing validator description",
        )

    def _get_validator_description(self, cons_addr: str) -> ValidatorDescription | None:
        try:
            rows = self.query(
                "SELECT * FROM validator_description WHERE validator_address = ?", cons_addr
            )
        except DatabaseError:
            return None
        if not rows:
            return None
        row = rows[0]
        return ValidatorDescription(
            operator_address=row["validator_address"],
            description=Description(
                moniker=row["moniker"] or "",
                identity=row["identity"] or "",
                website=row["website"] or "",
                security_contact=row["security_contact"] or "",
                details=row["details"] or "",
            ),
            avatar_url=row["avatar_url"] or "",
            height=row["height"],
        )

    # ------------------------------------------------------------------------------------------

    def save_validator_commission(self, data: ValidatorCommission) -> None:
        """Store a validator commission, keeping stored values for fields not given."""
        if data.commission is None and data.min_self_delegation is None:
            return

        cons_addr = self.get_validator_consensus_address(data.validator_address)

        commission = ""
        min_self_delegation = ""
        existing = self._get_validator_commission(cons_addr)
        if existing is not None:
            commission = existing.get("commission") or ""
            min_self_delegation = existing.get("min_self_delegation") or ""

        if data.commission is not None:
            commission = format_dec(Decimal(data.commission))
        if data.min_self_delegation is not None:
            min_self_delegation = str(data.min_self_delegation)

        self._execute(
            """INSERT INTO validator_commission (validator_address, commission, min_self_delegation, height)
VALUES (?, ?, ?, ?)
ON CONFLICT (validator_address) DO UPDATE
    SET commission = excluded.commission,
        min_self_delegation = excluded.min_self_delegation,
        height = excluded.height
WHERE validator_commission.height <= excluded.height""",
            (cons_addr, commission, min_self_delegation, data.height),
            action="storing validator commission",
        )

    def _get_validator_commission(self, cons_addr: str) -> dict[str, Any] | None:
        try:
            rows = self.query(
                "SELECT * FROM validator_commission WHERE validator_address = ?", cons_addr
            )
        except DatabaseError:
            return None
        return rows[0] if rows else None

    def _validators_by_operator(self, addresses: Iterable[str]) -> list[Validator]:
        return [self.get_validator(address) for address in addresses]