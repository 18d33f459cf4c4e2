import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stakeledger.store import Store
from stakeledger.types import (
    DatabaseError,
    MintParams,
    Pool,
    SlashingParams,
    StakingParams,
    Token,
    TokenPrice,
    TokenUnit,
    ValidatorSigningInfo,
    parse_dec,
)

VALCONS1 = "cosmosvalcons1qqqqrezrl53hujmpdch6d805ac75n220ku09rl"
VALCONS2 = "cosmosvalcons1rtst6se0nfgjy362v33jt5d05crgdyhfvvvvay"


@pytest.fixture
def store():
    db = Store(":memory:")
    yield db
    db.close()


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _inflation(store):
    rows = store.query("SELECT value, height FROM inflation")
    assert len(rows) == 1, "no duplicated inflation rows should be inserted"
    return parse_dec(rows[0]["value"]), rows[0]["height"]


def test_save_inflation(store):
    store.save_inflation(parse_dec("100.50"), 100)
    assert _inflation(store) == (Decimal("100.50"), 100)

    store.save_inflation(parse_dec("200.00"), 90)
    assert _inflation(store) == (Decimal("100.50"), 100)

    store.save_inflation(parse_dec("300.00"), 100)
    assert _inflation(store) == (Decimal("300.00"), 100)

    store.save_inflation(parse_dec("400.00"), 110)
    assert _inflation(store) == (Decimal("400.00"), 110)


def test_save_mint_params(store):
    params = {
        "mint_denom": "udaric",
        "inflation_rate_change": Decimal("0.4"),
        "inflation_max": Decimal("0.8"),
        "inflation_min": Decimal("0.4"),
        "goal_bonded": Decimal("0.8"),
        "blocks_per_year": 5006000,
    }
    store.save_mint_params(MintParams(params, 10))

    rows = store.query("SELECT params, height FROM mint_params")
    assert len(rows) == 1
    stored = json.loads(rows[0]["params"])
    assert stored["mint_denom"] == "udaric"
    assert stored["blocks_per_year"] == 5006000
    for key in ("inflation_rate_change", "inflation_max", "inflation_min", "goal_bonded"):
        assert parse_dec(stored[key]) == params[key]
    assert rows[0]["height"] == 10


def _insert_token(store, name):
    store.query("INSERT INTO token (name) VALUES (?)", name)
    for prefix, exponent in (("u", 0), ("m", 3), ("", 6)):
        denom = f"{prefix}{name}"
        store.query(
            "INSERT INTO token_unit (token_name, denom, exponent, price_id) VALUES (?, ?, ?, ?)",
            name,
            denom,
            exponent,
            denom,
        )


def test_get_tokens_price_id(store):
    _insert_token(store, "desmos")
    _insert_token(store, "daric")

    units = store.get_tokens_price_id()
    expected = ["udesmos", "mdesmos", "desmos", "udaric", "mdaric", "daric"]
    assert len(units) == len(expected)
    assert sorted(units) == sorted(expected)


def test_save_token(store):
    token = Token(
        "desmos",
        (
            TokenUnit("udesmos", 0, ("microdesmos",), "udesmos"),
            TokenUnit("desmos", 6, (), ""),
        ),
    )
    store.save_token(token)
    store.save_token(token)

    assert store.get_tokens_price_id() == ["udesmos", ""]
    assert store.query("SELECT name FROM token") == [{"name": "desmos"}]
    aliases = store.query("SELECT aliases FROM token_unit WHERE denom = 'udesmos'")
    assert json.loads(aliases[0]["aliases"]) == ["microdesmos"]


def test_save_token_without_units_fails(store):
    with pytest.raises(DatabaseError):
        store.save_token(Token("desmos", ()))


def _prices(store, order):
    rows = store.query(f"SELECT * FROM token_price ORDER BY {order}")
    return [
        (r["unit_name"], r["price"], r["market_cap"], datetime.fromisoformat(r["timestamp"]))
        for r in rows
    ]


def test_save_tokens_prices(store):
    _insert_token(store, "desmos")
    _insert_token(store, "atom")

    store.save_tokens_prices(
        [
            TokenPrice("desmos", 100.01, 10, _utc(2020, 10, 10, 15, 0, 0)),
            TokenPrice("atom", 200.01, 20, _utc(2020, 10, 10, 15, 0, 0)),
        ]
    )
    assert _prices(store, "rowid") == [
        ("desmos", 100.01, 10, _utc(2020, 10, 10, 15, 0, 0)),
        ("atom", 200.01, 20, _utc(2020, 10, 10, 15, 0, 0)),
    ]

    store.save_tokens_prices(
        [
            TokenPrice("desmos", 100.01, 10, _utc(2020, 10, 10, 15, 0, 0)),
            TokenPrice("atom", 1, 20, _utc(2020, 10, 10, 15, 5, 0)),
        ]
    )
    assert _prices(store, "timestamp") == [
        ("desmos", 100.01, 10, _utc(2020, 10, 10, 15, 0, 0)),
        ("atom", 1, 20, _utc(2020, 10, 10, 15, 5, 0)),
    ]


def test_save_tokens_prices_empty_is_noop(store):
    store.save_tokens_prices([])
    assert store.query("SELECT COUNT(*) AS n FROM token_price") == [{"n": 0}]


def _signing_infos(store):
    rows = store.query("SELECT * FROM validator_signing_info ORDER BY rowid")
    return [
        (
            r["validator_address"],
            r["start_height"],
            r["index_offset"],
            datetime.fromisoformat(r["jailed_until"]),
            bool(r["tombstoned"]),
            r["missed_blocks_counter"],
            r["height"],
        )
        for r in rows
    ]


def test_validator_signing_info(store):
    jailed = _utc(2020, 10, 10, 15, 0, 0)
    store.save_validators_signing_infos(
        [
            ValidatorSigningInfo(VALCONS1, 10, 10, jailed, True, 10, 10),
            ValidatorSigningInfo(VALCONS2, 10, 10, jailed, True, 10, 10),
        ]
    )
    assert _signing_infos(store) == [
        (VALCONS1, 10, 10, jailed, True, 10, 10),
        (VALCONS2, 10, 10, jailed, True, 10, 10),
    ]

    store.save_validators_signing_infos(
        [
            ValidatorSigningInfo(VALCONS1, 100, 10000, jailed, True, 70, 9),
            ValidatorSigningInfo(VALCONS2, 10, 10, jailed, False, 11, 11),
        ]
    )
    assert _signing_infos(store) == [
        (VALCONS1, 10, 10, jailed, True, 10, 10),
        (VALCONS2, 10, 10, jailed, False, 11, 11),
    ]


def _slashing(window, fraction, downtime):
    return {
        "signed_blocks_window": window,
        "min_signed_per_window": fraction,
        "downtime_jail_duration": 10000,
        "slash_fraction_double_sign": fraction,
        "slash_fraction_downtime": downtime,
    }


def _stored_slashing(store):
    rows = store.query("SELECT params FROM slashing_params")
    assert len(rows) == 1
    return json.loads(rows[0]["params"])


def test_save_slashing_params(store):
    original = _slashing(10, "1.000000000000000000", "0.010000000000000000")
    store.save_slashing_params(SlashingParams(original, 10))
    assert _stored_slashing(store) == original

    lower = _slashing(5, "0.500000000000000000", "0.005000000000000000")
    store.save_slashing_params(SlashingParams(lower, 9))
    assert _stored_slashing(store) == original

    store.save_slashing_params(SlashingParams(lower, 10))
    assert _stored_slashing(store) == lower

    higher = _slashing(6, "0.600000000000000000", "0.006000000000000000")
    store.save_slashing_params(SlashingParams(higher, 11))
    assert _stored_slashing(store) == higher


STAKING_PARAMS = {
    "unbonding_time": 259200000000000,
    "max_validators": 200,
    "max_entries": 7,
    "historical_entries": 10000,
    "bond_denom": "uatom",
}


def test_save_staking_params(store):
    store.save_staking_params(StakingParams(STAKING_PARAMS, 10))
    rows = store.query("SELECT params, height FROM staking_params")
    assert len(rows) == 1
    assert json.loads(rows[0]["params"]) == STAKING_PARAMS
    assert rows[0]["height"] == 10


def test_get_staking_params(store):
    store.query(
        "INSERT INTO staking_params (params, height) VALUES (?, ?)",
        json.dumps(STAKING_PARAMS),
        10,
    )
    assert store.get_staking_params() == StakingParams(params=STAKING_PARAMS, height=10)


def test_get_staking_params_missing(store):
    with pytest.raises(DatabaseError, match="no staking params found"):
        store.get_staking_params()


def _pool(store):
    rows = store.query("SELECT * FROM staking_pool")
    assert len(rows) == 1
    row = rows[0]
    return int(row["bonded_tokens"]), int(row["not_bonded_tokens"]), row["height"]


def test_save_staking_pool(store):
    store.save_staking_pool(Pool(50, 100, 10))
    assert _pool(store) == (50, 100, 10)

    store.save_staking_pool(Pool(1, 1, 8))
    assert _pool(store) == (50, 100, 10), "updating with a lower height should not modify the data"

    store.save_staking_pool(Pool(1, 1, 10))
    assert _pool(store) == (1, 1, 10)

    store.save_staking_pool(Pool(1000000, 1000000, 20))
    assert _pool(store) == (1000000, 1000000, 20)


def test_prune(store):
    store.save_inflation(parse_dec("1"), 5)
    store.query(
        "INSERT INTO account_balance (address, coins, height) VALUES (?, ?, ?), (?, ?, ?)",
        "a", "[]", 5, "b", "[]", 6,
    )
    store.query(
        "INSERT INTO delegation (validator_address, delegator_address, amount, height) "
        "VALUES (?, ?, ?, ?), (?, ?, ?, ?)",
        VALCONS1, "a", "100cosmos", 5, VALCONS2, "a", "100cosmos", 6,
    )

    store.prune(5)

    assert store.query("SELECT COUNT(*) AS n FROM inflation") == [{"n": 0}]
    assert store.query("SELECT address FROM account_balance") == [{"address": "b"}]
    assert store.query("SELECT height FROM delegation") == [{"height": 6}]


def test_save_accounts(store):
    store.save_accounts(["b", "a", "b"])
    store.save_accounts([])
    rows = store.query("SELECT address FROM account ORDER BY address")
    assert [r["address"] for r in rows] == ["a", "b"]


def test_query_errors_raise_database_error(store):
    with pytest.raises(DatabaseError):
        store.query("SELECT * FROM missing_table")


def test_context_manager_closes():
    with Store(":memory:") as db:
        db.save_inflation(parse_dec("1"), 1)
        assert db.query("SELECT height FROM inflation") == [{"height": 1}]
    with pytest.raises(DatabaseError):
        db.query("SELECT 1")