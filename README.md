# stakeledger

`stakeledger` keeps the state of a proof-of-stake chain in a single SQLite
database: validators with their descriptions, commissions, voting powers and
statuses; delegations, redelegations and unbonding delegations; validator
signing infos and double-sign evidence; inflation; staking, slashing and mint
parameters; the staking pool; tokens and their prices.

Writes are height-aware. A record is replaced only by one carrying the same
or a greater height (for token prices, the same or a later timestamp), so
data that arrives out of order never overwrites newer data.

It uses the standard library only.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Usage

`stakeledger.unbonding.Db` is the complete store. It takes the path of a
database file (default `":memory:"`), creates its tables if they are missing,
and works as a context manager that closes the connection on exit:

```python
from stakeledger.types import parse_dec
from stakeledger.unbonding import Db

with Db(":memory:") as db:
    db.save_inflation(parse_dec("100.50"), 100)
    db.save_inflation(parse_dec("200.00"), 90)   # lower height: ignored
    print(db.query("SELECT value, height FROM inflation"))
    # [{'value': '100.500000000000000000', 'height': 100}]
```

`query(sql, *args)` runs any statement with `?` placeholders and returns the
rows as dictionaries.

The store is built in layers, each class adding one area to the one before:

| Class | Module | Adds |
| --- | --- | --- |
| `Store` | `stakeledger.store` | accounts, inflation, mint/slashing/staking params, staking pool, tokens and token prices, validator signing infos, pruning |
| `ValidatorStore` | `stakeledger.validators` | validator data, lookups by operator, consensus or self-delegate address, descriptions, commissions |
| `ValidatorEventStore` | `stakeledger.validator_events` | voting powers, statuses, double-sign evidence |
| `DelegationStore` | `stakeledger.delegations` | delegations and redelegations, per-delegator totals |
| `Db` | `stakeledger.unbonding` | unbonding delegations, delegators pending refresh |

Delegations, redelegations and unbonding delegations refer to validators by
operator address; those validators must already be stored with
`save_validators_data`. The delegator addresses are added to the account
table as a side effect. Large batches are split into several statements.

`save_validator_description` merges the new description into the stored one:
fields set to `"[do-not-modify]"` keep their stored value, and field lengths
are checked by `Description.ensure_length`. `save_validator_commission` keeps
the stored commission or minimum self delegation when the new record leaves
it as `None`, and does nothing when both are `None`.

`delete_delegators_to_refresh(height)` removes and returns the delegators
marked at a height lower than the one given.

### Records and helpers

The records passed in and returned live in `stakeledger.types`: `Validator`,
`Description`, `ValidatorDescription`, `ValidatorCommission`,
`ValidatorVotingPower`, `ValidatorStatus`, `DoubleSignVote`,
`DoubleSignEvidence`, `Delegation`, `Redelegation`, `UnbondingDelegation`,
`Coin`, `Token`, `TokenUnit`, `TokenPrice`, `ValidatorSigningInfo`,
`MintParams`, `SlashingParams`, `StakingParams` and `Pool`.

- `parse_dec(text)` reads a decimal string with at most 18 fractional digits.
- `format_dec(value)` renders a decimal with exactly 18 fractional digits.
- `add_coins(coins, coin)` returns the coins summed by denomination, sorted
  by denom, without zero amounts.

### Errors

Failures are raised as `stakeledger.types.DatabaseError`: SQLite errors,
a validator that has not been stored, a token saved without units, reading
staking params before any were saved. Invalid values (a malformed decimal,
a bad denom, a negative amount, an over-long description field) raise
`ValueError`.

### Pruning

`prune(height)` deletes the rows recorded at exactly that height from the
supply, account balance, staking pool, validator commission, voting power
and status, delegation, unbonding delegation, redelegation, double-sign
vote and evidence, inflation, community pool, validator commission amount,
delegation reward, validator signing info and slashing params tables.

## What it does not do

- It does not fetch anything from a chain node; it only stores what it is
  given.
- It has no command line and no server.
- The supply, account balance, community pool, validator commission amount
  and delegation reward tables are created and pruned, but the store has no
  methods that write them; use `query` for that.
- Storage is SQLite only.