"""
Tests for the holder store against fake asyncpg executors.

These check the SQL shape, argument binding and failure isolation; the
Postgres behaviour itself is covered by tests/integration.
"""

from decimal import Decimal

import pytest

from core.errors import NotFoundError, StorageError, ValidationError
from holders.repository import MAX_LIMIT, MAX_PAGE, HolderStore, build_list_query
from holders.schemas import HolderQuery, HolderRecord

ASSET = "Xs3eBt7uRfJX8QUs4suhyU8p2M6DoUDrJyWBa8LLZsg"


def record(holder_key="Holder1", **overrides):
    values = {
        "asset_address": ASSET,
        "holder_key": holder_key,
        "native_balance": 2039280,
        "is_native": False,
        "owner": "Wallet1",
        "state": "Initialized",
        "decimals": 6,
        "amount": "1500000",
    }
    values.update(overrides)
    return HolderRecord(**values)


class TestUpsert:
    @pytest.mark.asyncio
    async def test_binds_exact_amount_and_derived_fields(self, fake_conn):
        store = HolderStore(fake_conn)
        amount = "123456789012345678901234567890"

        row = await store.upsert(record(amount=amount, decimals=18))

        (kind, sql, args), = fake_conn.calls
        assert kind == "fetchrow"
        assert "ON CONFLICT (asset_address, holder_key) DO UPDATE" in sql
        assert "updated_at = GREATEST(clock_timestamp()" in sql
        assert args[:7] == (ASSET, "Holder1", Decimal(2039280), False, "Wallet1", "Initialized", 18)
        assert args[7] == Decimal(amount)
        assert isinstance(args[8], float)
        assert args[9] == "123456789012.34567890123456789"
        assert row["amount"] == amount
        assert row["native_balance"] == 2039280

    @pytest.mark.asyncio
    async def test_ledger_display_values_are_recomputed(self, fake_conn):
        store = HolderStore(fake_conn)

        row = await store.upsert(record(amount="2500000", decimals=6))

        assert row["display_amount"] == pytest.approx(2.5)
        assert row["display_amount_string"] == "2.5"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", ["frozen", "FROZEN", "Closed", ""])
    async def test_rejects_state_outside_enum_without_touching_storage(self, fake_conn, state):
        store = HolderStore(fake_conn)

        with pytest.raises(ValidationError):
            await store.upsert(record(state=state))

        assert fake_conn.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["1.5", "²", "١٢", ""])
    async def test_rejects_non_integer_amount(self, fake_conn, amount):
        with pytest.raises(ValidationError):
            await HolderStore(fake_conn).upsert(record(amount=amount))
        assert fake_conn.calls == []

    @pytest.mark.asyncio
    async def test_database_errors_become_storage_errors(self, make_conn):
        conn = make_conn(fail_on={"Holder1"})

        with pytest.raises(StorageError):
            await HolderStore(conn).upsert(record())


class TestUpsertMany:
    @pytest.mark.asyncio
    async def test_one_transaction_with_a_savepoint_per_record(self, fake_pool, fake_conn):
        store = HolderStore(fake_pool)

        result = await store.upsert_many([record("H1"), record("H2")])

        assert (result.upserted, result.failed) == (2, 0)
        assert fake_pool.acquired == 1
        assert fake_conn.events == [
            ("begin", 0),
            ("begin", 1),
            ("commit", 1),
            ("begin", 1),
            ("commit", 1),
            ("commit", 0),
        ]

    @pytest.mark.asyncio
    async def test_failed_record_is_rolled_back_and_rest_commit(self, make_conn, make_pool):
        conn = make_conn(fail_on={"H2"})
        store = HolderStore(make_pool(conn))

        result = await store.upsert_many([record("H1"), record("H2"), record("H3")])

        assert (result.upserted, result.failed) == (2, 1)
        written = [args[1] for kind, _, args in conn.calls]
        assert written == ["H1", "H2", "H3"]
        assert ("rollback", 1) in conn.events
        assert conn.events[-1] == ("commit", 0)

    @pytest.mark.asyncio
    async def test_invalid_state_is_skipped_inside_batch(self, fake_pool, fake_conn):
        store = HolderStore(fake_pool)

        result = await store.upsert_many([record("H1", state="frozen"), record("H2")])

        assert (result.upserted, result.failed) == (1, 1)
        assert [args[1] for _, _, args in fake_conn.calls] == ["H2"]

    @pytest.mark.asyncio
    async def test_commit_failure_raises_storage_error(self, make_conn, make_pool):
        conn = make_conn(fail_commit=True)

        with pytest.raises(StorageError):
            await HolderStore(make_pool(conn)).upsert_many([record("H1")])

    @pytest.mark.asyncio
    async def test_runs_on_a_connection_already_in_use(self, fake_conn):
        result = await HolderStore(fake_conn).upsert_many([record("H1")])

        assert result.upserted == 1
        assert fake_conn.events[0] == ("begin", 0)


class TestSetState:
    @pytest.mark.asyncio
    async def test_invalid_state_mutates_nothing(self, fake_conn):
        with pytest.raises(ValidationError):
            await HolderStore(fake_conn).set_state(ASSET, "Holder1", "Melted")
        assert fake_conn.calls == []

    @pytest.mark.asyncio
    async def test_non_string_state_is_rejected(self, fake_conn):
        with pytest.raises(ValidationError):
            await HolderStore(fake_conn).set_state(ASSET, "Holder1", 1)

    @pytest.mark.asyncio
    async def test_unknown_identity_is_not_found(self, fake_conn):
        with pytest.raises(NotFoundError):
            await HolderStore(fake_conn).set_state(ASSET, "Missing", "Initialized")

        (_, sql, args), = fake_conn.calls
        assert sql.lstrip().startswith("UPDATE holders")
        assert args == (ASSET, "Missing", "Initialized")

    @pytest.mark.asyncio
    async def test_returns_full_updated_row(self, make_conn, make_holder_row):
        conn = make_conn(fetchrow_result=make_holder_row(state="Frozen", amount=Decimal(42)))

        row = await HolderStore(conn).set_state(ASSET, "HolderKey1", "Frozen")

        assert row["state"] == "Frozen"
        assert row["amount"] == "42"
        assert {"created_at", "updated_at", "display_amount", "owner"} <= set(row)


class TestQuery:
    @pytest.mark.asyncio
    async def test_returns_rows_and_separate_total(self, make_conn, make_holder_row):
        conn = make_conn(fetch_result=[make_holder_row(id=2)], fetchval_result=3)
        query = HolderQuery(filters={"asset_address": ASSET}, page=2, limit=1)

        rows, total = await HolderStore(conn).query(query)

        assert total == 3
        assert [r["id"] for r in rows] == [2]
        count_call, select_call = conn.calls
        assert count_call[0] == "fetchval"
        assert count_call[2] == (ASSET,)
        assert select_call[2] == (ASSET, 1, 1)

    @pytest.mark.asyncio
    async def test_query_errors_become_storage_errors(self, make_conn):
        class Broken(make_conn):
            async def fetchval(self, sql, *args):
                raise OSError("down")

        with pytest.raises(StorageError):
            await HolderStore(Broken()).query(HolderQuery())


class TestBuildListQuery:
    def test_defaults(self):
        select_sql, count_sql, args, count_args = build_list_query(HolderQuery())

        assert "WHERE amount > 0" in select_sql
        assert "ORDER BY id ASC" in select_sql
        assert "LIMIT $1 OFFSET $2" in select_sql
        assert args == [10, 0]
        assert count_sql == "SELECT count(*) AS n FROM holders WHERE amount > 0"
        assert count_args == []

    def test_include_empty_drops_amount_predicate(self):
        select_sql, count_sql, _, _ = build_list_query(HolderQuery(include_empty=True))
        assert "WHERE" not in select_sql
        assert "WHERE" not in count_sql

    def test_filters_are_bound_in_allow_list_order(self):
        query = HolderQuery(filters={"state": "Frozen", "owner": "Wallet1", "asset_address": ASSET})

        select_sql, count_sql, args, count_args = build_list_query(query)

        assert "asset_address = $1 AND owner = $2 AND state = $3" in select_sql
        assert "LIMIT $4 OFFSET $5" in select_sql
        assert args == [ASSET, "Wallet1", "Frozen", 10, 0]
        assert count_args == [ASSET, "Wallet1", "Frozen"]
        assert count_sql.endswith("WHERE amount > 0 AND asset_address = $1 AND owner = $2 AND state = $3")

    def test_unknown_filter_keys_are_ignored(self):
        query = HolderQuery(filters={"amount > 0; DROP TABLE holders; --": "x", "lamports": "1"})

        select_sql, _, args, _ = build_list_query(query)

        assert "DROP" not in select_sql
        assert "lamports" not in select_sql
        assert args == [10, 0]

    def test_filter_values_never_reach_sql_text(self):
        hostile = "x' OR '1'='1"
        select_sql, count_sql, args, _ = build_list_query(HolderQuery(filters={"owner": hostile}))

        assert hostile not in select_sql
        assert hostile not in count_sql
        assert args[0] == hostile

    def test_sort_descending_with_tie_break(self):
        select_sql, _, _, _ = build_list_query(HolderQuery(sort_field="display_amount", descending=True))
        assert "ORDER BY display_amount DESC, id ASC" in select_sql

    def test_sort_by_id_has_no_duplicate_tie_break(self):
        select_sql, _, _, _ = build_list_query(HolderQuery(sort_field="id", descending=True))
        assert "ORDER BY id DESC\n" in select_sql

    @pytest.mark.parametrize("field", ["unknown", "amount; DROP TABLE holders", "1", ""])
    def test_unknown_sort_falls_back_to_default(self, field):
        select_sql, _, _, _ = build_list_query(HolderQuery(sort_field=field, descending=True))

        assert "ORDER BY id ASC" in select_sql
        assert "DROP" not in select_sql

    @pytest.mark.parametrize(
        "page,limit,expected",
        [
            (1, 10, [10, 0]),
            (3, 20, [20, 40]),
            (0, 10, [10, 0]),
            (-4, 10, [10, 0]),
            (1, 5000, [1000, 0]),
            (2, 0, [1, 1]),
        ],
    )
    def test_pagination_is_clamped(self, page, limit, expected):
        _, _, args, _ = build_list_query(HolderQuery(page=page, limit=limit))
        assert args == expected

    @pytest.mark.parametrize("limit", [1, 10, MAX_LIMIT])
    def test_huge_page_keeps_offset_within_bigint(self, limit):
        _, _, args, _ = build_list_query(HolderQuery(page=10**20, limit=limit))

        assert args[0] == limit
        assert 0 < args[1] <= 2**63 - 1
        assert args[1] == (MAX_PAGE - 1) * limit
