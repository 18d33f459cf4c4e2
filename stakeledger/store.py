"""SQLite-backed storage of chain state snapshots."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Sequence

from stakeledger.types import (
    DatabaseError,
    MintParams,
    Pool,
    SlashingParams,
    StakingParams,
    Token,
    TokenPrice,
    ValidatorSigningInfo,
    format_dec,
)

_ONE_ROW = "one_row_id BOOLEAN NOT NULL DEFAULT 1 PRIMARY KEY CHECK (one_row_id)"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS account (address TEXT NOT NULL PRIMARY KEY);
CREATE TABLE IF NOT EXISTS validator (
    consensus_address TEXT NOT NULL PRIMARY KEY,
    consensus_pubkey TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS validator_info (
    consensus_address TEXT NOT NULL PRIMARY KEY,
    operator_address TEXT NOT NULL UNIQUE,
    self_delegate_address TEXT,
    max_change_rate TEXT NOT NULL,
    max_rate TEXT NOT NULL,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS validator_description (
    validator_address TEXT NOT NULL PRIMARY KEY,
    moniker TEXT,
    identity TEXT,
    avatar_url TEXT,
    website TEXT,
    security_contact TEXT,
    details TEXT,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS validator_commission (
    validator_address TEXT NOT NULL PRIMARY KEY,
    commission TEXT NOT NULL,
    min_self_delegation TEXT NOT NULL,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS validator_voting_power (
    validator_address TEXT NOT NULL PRIMARY KEY,
    voting_power INTEGER NOT NULL,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS validator_status (
    validator_address TEXT NOT NULL PRIMARY KEY,
    status INTEGER NOT NULL,
    jailed BOOLEAN NOT NULL,
    tombstoned BOOLEAN NOT NULL DEFAULT 0,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS double_sign_vote (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type INTEGER NOT NULL,
    height INTEGER NOT NULL,
    round INTEGER NOT NULL,
    block_id TEXT NOT NULL,
    validator_address TEXT NOT NULL,
    validator_index INTEGER NOT NULL,
    signature TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS double_sign_evidence (
    height INTEGER NOT NULL,
    vote_a_id INTEGER NOT NULL,
    vote_b_id INTEGER NOT NULL,
    UNIQUE (vote_a_id, vote_b_id)
);
CREATE TABLE IF NOT EXISTS delegation (
    validator_address TEXT NOT NULL,
    delegator_address TEXT NOT NULL,
    amount TEXT NOT NULL,
    height INTEGER NOT NULL,
    UNIQUE (delegator_address, validator_address)
);
CREATE TABLE IF NOT EXISTS redelegation (
    delegator_address TEXT NOT NULL,
    src_validator_address TEXT NOT NULL,
    dst_validator_address TEXT NOT NULL,
    amount TEXT NOT NULL,
    completion_time TEXT NOT NULL,
    height INTEGER NOT NULL,
    UNIQUE (delegator_address, src_validator_address, dst_validator_address, completion_time)
);
CREATE TABLE IF NOT EXISTS unbonding_delegation (
    validator_address TEXT NOT NULL,
    delegator_address TEXT NOT NULL,
    amount TEXT NOT NULL,
    completion_timestamp TEXT NOT NULL,
    height INTEGER NOT NULL,
    UNIQUE (delegator_address, validator_address, completion_timestamp)
);
CREATE TABLE IF NOT EXISTS delegators_to_refresh (
    address TEXT NOT NULL UNIQUE,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS supply ({_ONE_ROW}, coins TEXT NOT NULL, height INTEGER NOT NULL);
CREATE TABLE IF NOT EXISTS account_balance (
    address TEXT NOT NULL PRIMARY KEY,
    coins TEXT NOT NULL,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS community_pool ({_ONE_ROW}, coins TEXT NOT NULL, height INTEGER NOT NULL);
CREATE TABLE IF NOT EXISTS validator_commission_amount (
    validator_address TEXT NOT NULL PRIMARY KEY,
    amount TEXT NOT NULL,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS delegation_reward (
    validator_address TEXT NOT NULL,
    delegator_address TEXT NOT NULL,
    withdraw_address TEXT NOT NULL,
    amount TEXT NOT NULL,
    height INTEGER NOT NULL,
    UNIQUE (validator_address, delegator_address)
);
CREATE TABLE IF NOT EXISTS inflation ({_ONE_ROW}, value TEXT NOT NULL, height INTEGER NOT NULL);
CREATE TABLE IF NOT EXISTS mint_params ({_ONE_ROW}, params TEXT NOT NULL, height INTEGER NOT NULL);
CREATE TABLE IF NOT EXISTS staking_pool (
    {_ONE_ROW},
    bonded_tokens TEXT NOT NULL,
    not_bonded_tokens TEXT NOT NULL,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS staking_params ({_ONE_ROW}, params TEXT NOT NULL, height INTEGER NOT NULL);
CREATE TABLE IF NOT EXISTS slashing_params ({_ONE_ROW}, params TEXT NOT NULL, height INTEGER NOT NULL);
CREATE TABLE IF NOT EXISTS validator_signing_info (
    validator_address TEXT NOT NULL PRIMARY KEY,
    start_height INTEGER NOT NULL,
    index_offset INTEGER NOT NULL,
    jailed_until TEXT NOT NULL,
    tombstoned BOOLEAN NOT NULL,
    missed_blocks_counter INTEGER NOT NULL,
    height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS token (name TEXT NOT NULL PRIMARY KEY);
CREATE TABLE IF NOT EXISTS token_unit (
    token_name TEXT NOT NULL,
    denom TEXT NOT NULL UNIQUE,
    exponent INTEGER NOT NULL,
    aliases TEXT,
    price_id TEXT
);
CREATE TABLE IF NOT EXISTS token_price (
    unit_name TEXT NOT NULL UNIQUE,
    price REAL NOT NULL,
    market_cap INTEGER NOT NULL,
    timestamp TEXT NOT NULL
);
"""

# Tables cleared by ``Store.prune``, grouped by the module that owns them.
_PRUNED_TABLES: dict[str, tuple[tuple[str, str], ...]] = {
    "bank": (
        ("supply", "supply"),
        ("account_balance", "account balance"),
    ),
    "staking": (
        ("staking_pool", "staking pool"),
        ("validator_commission", "validator commission"),
        ("validator_voting_power", "validator voting power"),
        ("validator_status", "validator status"),
        ("delegation", "validator delegation"),
        ("unbonding_delegation", "unbonding delegation"),
        ("redelegation", "redelegation"),
        ("double_sign_vote", "double sign votes"),
        ("double_sign_evidence", "double sign evidence"),
    ),
    "mint": (("inflation", "inflation"),),
    "distribution": (
        ("community_pool", "community pool"),
        ("validator_commission_amount", "validator commission amount"),
        ("delegation_reward", "delegation reward"),
    ),
    "slashing": (
        ("validator_signing_info", "validator signing info"),
        ("slashing_params", "slashing params"),
    ),
}


def _db_time(value: datetime) -> str:
    """Render a timestamp as fixed-width UTC ISO text, so text order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_dec(value)
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def _to_json(params: Any) -> str:
    return json.dumps(params, default=_json_default)


def _values(row_count: int, width: int) -> str:
    row = "(" + ", ".join("?" * width) + ")"
    return ", ".join([row] * row_count)


def _null_string(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class Store:
    """Storage of chain state, keeping for each record the most recent height only."""

    def __init__(self, path: str = ":memory:") -> None:
        try:
            self._conn = sqlite3.connect(path)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as err:
            raise DatabaseError(f"error while opening database: {err}") from err

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # ------------------------------------------------------------------------------------------

    def _execute(self, sql: str, args: Sequence[Any] = (), *, action: str) -> sqlite3.Cursor:
        try:
            with self._conn:
                return self._conn.execute(sql, tuple(args))
        except sqlite3.Error as err:
            raise DatabaseError(f"error while {action}: {err}") from err

    def query(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """Run a statement and return its rows as dictionaries."""
        cursor = self._execute(sql, args, action="running query")
        return [dict(row) for row in cursor.fetchall()]

    def _save_one_row_params(self, table: str, params: Any, height: int, name: str) -> None:
        try:
            params_json = _to_json(params)
        except (TypeError, ValueError) as err:
            raise DatabaseError(f"error while marshaling {name} params: {err}") from err
        self._execute(
            f"""INSERT INTO {table} (params, height) VALUES (?, ?)
ON CONFLICT (one_row_id) DO UPDATE
    SET params = excluded.params,
        height = excluded.height
WHERE {table}.height <= excluded.height""",
            (params_json, height),
            action=f"storing {name} params",
        )

    # ------------------------------------------------------------------------------------------

    def save_accounts(self, addresses: Iterable[str]) -> None:
        """Store the given account addresses, ignoring those already known."""
        rows = [(address,) for address in addresses]
        if not rows:
            return
        try:
            with self._conn:
                self._conn.executemany(
                    "INSERT INTO account (address) VALUES (?) ON CONFLICT DO NOTHING", rows
                )
        except sqlite3.Error as err:
            raise DatabaseError(f"error while storing accounts: {err}") from err

    def save_inflation(self, inflation: Decimal | str, height: int) -> None:
        """Store the inflation at the given height unless a newer one is present."""
        self._execute(
            """INSERT INTO inflation (value, height) VALUES (?, ?)
ON CONFLICT (one_row_id) DO UPDATE
    SET value = excluded.value,
        height = excluded.height
WHERE inflation.height <= excluded.height""",
            (format_dec(inflation), height),
            action="storing inflation",
        )

    def save_mint_params(self, params: MintParams) -> None:
        self._save_one_row_params("mint_params", params.params, params.height, "mint")

    # ------------------------------------------------------------------------------------------

    def get_tokens_price_id(self) -> list[str]:
        """Return the price id of every stored token unit, empty where none is set."""
        rows = self.query("SELECT price_id FROM token_unit ORDER BY rowid")
        return [row["price_id"] or "" for row in rows]

    def save_token(self, token: Token) -> None:
        """Store the token and its units, leaving existing entries untouched."""
        self._execute(
            "INSERT INTO token (name) VALUES (?) ON CONFLICT DO NOTHING",
            (token.name,),
            action="saving token",
        )
        if not token.units:
            raise DatabaseError(f"error while saving token: token {token.name} has no units")

        args: list[Any] = []
        for unit in token.units:
            args.extend(
                (
                    token.name,
                    unit.denom,
                    unit.exponent,
                    json.dumps(list(unit.aliases)),
                    _null_string(unit.price_id),
                )
            )
        self._execute(
            "INSERT INTO token_unit (token_name, denom, exponent, aliases, price_id) VALUES "
            + _values(len(token.units), 5)
            + " ON CONFLICT DO NOTHING",
            args,
            action="saving token",
        )

    def save_tokens_prices(self, prices: Sequence[TokenPrice]) -> None:
        """Store the given prices, keeping for each unit the most recent one."""
        if not prices:
            return
        args: list[Any] = []
        for price in prices:
            args.extend((price.unit_name, price.price, price.market_cap, _db_time(price.timestamp)))
        self._execute(
            "INSERT INTO token_price (unit_name, price, market_cap, timestamp) VALUES "
            + _values(len(prices), 4)
            + """
ON CONFLICT (unit_name) DO UPDATE
    SET price = excluded.price,
        market_cap = excluded.market_cap,
        timestamp = excluded.timestamp
WHERE token_price.timestamp <= excluded.timestamp""",
            args,
            action="saving tokens prices",
        )

    # ------------------------------------------------------------------------------------------

    def prune(self, height: int) -> None:
        """Delete every height-bound record stored for the given height."""
        for module, tables in _PRUNED_TABLES.items():
            for table, label in tables:
                try:
                    with self._conn:
                        self._conn.execute(f"DELETE FROM {table} WHERE height = ?", (height,))
                except sqlite3.Error as err:
                    raise DatabaseError(
                        f"error while pruning {module}: error while pruning {label}: {err}"
                    ) from err

    # ------------------------------------------------------------------------------------------

    def save_validators_signing_infos(self, infos: Sequence[ValidatorSigningInfo]) -> None:
        if not infos:
            return
        args: list[Any] = []
        for info in infos:
            args.extend(
                (
                    info.validator_address,
                    info.start_height,
                    info.index_offset,
                    _db_time(info.jailed_until),
                    info.tombstoned,
                    info.missed_blocks_counter,
                    info.height,
                )
            )
        self._execute(
            """INSERT INTO validator_signing_info
    (validator_address, start_height, index_offset, jailed_until, tombstoned,
     missed_blocks_counter, height)
VALUES """
            + _values(len(infos), 7)
            + """
ON CONFLICT (validator_address) DO UPDATE
    SET validator_address = excluded.validator_address,
        start_height = excluded.start_height,
        index_offset = excluded.index_offset,
        jailed_until = excluded.jailed_until,
        tombstoned = excluded.tombstoned,
        missed_blocks_counter = excluded.missed_blocks_counter,
        height = excluded.height
WHERE validator_signing_info.height <= excluded.height""",
            args,
            action="storing validators signing infos",
        )

    def save_slashing_params(self, params: SlashingParams) -> None:
        self._save_one_row_params("slashing_params", params.params, params.height, "slashing")

    # ------------------------------------------------------------------------------------------

    def save_staking_params(self, params: StakingParams) -> None:
        self._save_one_row_params("staking_params", params.params, params.height, "staking")

    def get_staking_params(self) -> StakingParams:
        """Return the stored staking params, raising DatabaseError if there are none."""
        rows = self.query("SELECT params, height FROM staking_params LIMIT 1")
        if not rows:
            raise DatabaseError("no staking params found")
        try:
            params = json.loads(rows[0]["params"])
        except json.JSONDecodeError as err:
            raise DatabaseError(f"error while reading staking params: {err}") from err
        return StakingParams(params=params, height=rows[0]["height"])

    def save_staking_pool(self, pool: Pool) -> None:
        self._execute(
            """INSERT INTO staking_pool (bonded_tokens, not_bonded_tokens, height)
VALUES (?, ?, ?)
ON CONFLICT (one_row_id) DO UPDATE
    SET bonded_tokens = excluded.bonded_tokens,
        not_bonded_tokens = excluded.not_bonded_tokens,
        height = excluded.height
WHERE staking_pool.height <= excluded.height""",
            (str(pool.bonded_tokens), str(pool.not_bonded_tokens), pool.height),
            action="storing staking pool",
        )