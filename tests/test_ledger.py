"""Tests for StockLedger against a real SQLite database."""

import asyncio
from datetime import datetime

import pytest

from conftest import credentials, make_ledger
from payout_ledger.errors import NotConfigured, StoreUnavailable
from payout_ledger.models import Credential, GuildConfig, ServiceType


def run(coro):
    return asyncio.run(coro)


class TestBulkAdd:
    """Bulk import with skip-duplicate semantics."""

    def test_duplicate_in_batch_collapses_to_one_row(self, ledger):
        records = [
            Credential("a@x.com", "p1"),
            Credential("a@x.com", "p1"),
            Credential("b@x.com", "p2"),
        ]

        result = run(ledger.bulk_add("g1", ServiceType.NFA, records))

        assert result.succeeded == 2
        assert result.skipped == 1
        assert run(ledger.count("g1")) == {ServiceType.NFA: 2}

    def test_repeated_import_skips_everything(self, ledger):
        records = [
            Credential("a@x.com", "p1"),
            Credential("a@x.com", "p1"),
            Credential("b@x.com", "p2"),
        ]
        run(ledger.bulk_add("g1", ServiceType.NFA, records))

        again = run(ledger.bulk_add("g1", ServiceType.NFA, records[1:]))

        assert again.succeeded == 0
        assert again.skipped == 2

    def test_processed_count_matches_input_and_stock_grows_by_succeeded(self, ledger):
        run(ledger.bulk_add("g1", ServiceType.FA, credentials("a@x.com", "b@x.com")))
        before = run(ledger.count("g1")).get(ServiceType.FA, 0)

        records = credentials("a@x.com", "c@x.com", "d@x.com", "b@x.com")
        result = run(ledger.bulk_add("g1", ServiceType.FA, records))

        assert result.succeeded + result.skipped == len(records)
        assert result.total == len(records)
        assert run(ledger.count("g1"))[ServiceType.FA] == before + result.succeeded

    def test_same_email_allowed_across_services_and_guilds(self, ledger):
        run(ledger.bulk_add("g1", ServiceType.NFA, credentials("a@x.com")))
        fa = run(ledger.bulk_add("g1", ServiceType.FA, credentials("a@x.com")))
        other_guild = run(ledger.bulk_add("g2", ServiceType.NFA, credentials("a@x.com")))

        assert fa.succeeded == 1
        assert other_guild.succeeded == 1

    def test_failure_mid_batch_rolls_back_everything(self, ledger):
        # secret=None violates NOT NULL on the third row
        records = [
            Credential("a@x.com", "p1"),
            Credential("b@x.com", "p2"),
            Credential("c@x.com", None),
        ]

        with pytest.raises(StoreUnavailable):
            run(ledger.bulk_add("g1", ServiceType.NFA, records))

        assert run(ledger.count("g1")) == {}

    def test_accepts_plain_string_service(self, ledger):
        result = run(ledger.bulk_add("g1", "xboxgp", credentials("a@x.com")))
        assert result.succeeded == 1
        assert run(ledger.count("g1")) == {ServiceType.XBOXGP: 1}


class TestTakeRandom:
    """Atomic pick-and-remove."""

    def test_empty_ledger_is_out_of_stock(self, ledger):
        assert run(ledger.take_random("g1", ServiceType.FA)) is None
        assert ServiceType.FA not in run(ledger.count("g1"))
        assert run(ledger.count("g1")) == {}

    def test_take_removes_the_record(self, ledger):
        run(ledger.bulk_add("g1", ServiceType.NFA, [Credential("a@x.com", "secret:with:colons")]))

        account = run(ledger.take_random("g1", ServiceType.NFA))

        assert account.email == "a@x.com"
        assert account.secret == "secret:with:colons"
        assert account.guild_id == "g1"
        assert account.service_type is ServiceType.NFA
        assert isinstance(account.created_at, datetime)
        assert account.created_at.tzinfo is not None
        assert run(ledger.take_random("g1", ServiceType.NFA)) is None

    def test_only_matching_service_and_guild_is_taken(self, ledger):
        run(ledger.bulk_add("g1", ServiceType.NFA, credentials("nfa@x.com")))
        run(ledger.bulk_add("g2", ServiceType.FA, credentials("other@x.com")))

        assert run(ledger.take_random("g1", ServiceType.FA)) is None
        assert run(ledger.take_random("g2", ServiceType.NFA)) is None
        assert run(ledger.count("g1")) == {ServiceType.NFA: 1}
        assert run(ledger.count("g2")) == {ServiceType.FA: 1}

    def test_five_records_six_concurrent_takes(self, ledger):
        emails = [f"user{i}@x.com" for i in range(5)]
        run(ledger.bulk_add("g2", ServiceType.XBOXGP, credentials(*emails)))

        async def take_all():
            return await asyncio.gather(
                *(ledger.take_random("g2", ServiceType.XBOXGP) for _ in range(6))
            )

        results = run(take_all())
        taken = [r for r in results if r is not None]

        assert len(taken) == 5
        assert results.count(None) == 1
        assert sorted(r.email for r in taken) == sorted(emails)
        assert len({r.id for r in taken}) == 5

    def test_concurrent_takes_never_double_issue(self, ledger):
        emails = [f"user{i}@x.com" for i in range(12)]
        run(ledger.bulk_add("g1", ServiceType.NFA, credentials(*emails)))

        async def take_many(n):
            return await asyncio.gather(
                *(ledger.take_random("g1", ServiceType.NFA) for _ in range(n))
            )

        results = run(take_many(20))
        taken = [r.email for r in results if r is not None]

        assert len(taken) == min(len(emails), 20)
        assert len(set(taken)) == len(taken)
        assert results.count(None) == 20 - len(emails)
        assert run(ledger.count("g1")) == {}

    def test_store_failure_is_not_out_of_stock(self, tmp_path):
        ledger = make_ledger(tmp_path, initialize=False)  # no tables

        with pytest.raises(StoreUnavailable):
            run(ledger.take_random("g1", ServiceType.NFA))


class TestClearAndCount:

    def test_clear_removes_service_from_count(self, ledger):
        run(ledger.bulk_add("g1", ServiceType.NFA, credentials("a@x.com", "b@x.com")))
        run(ledger.bulk_add("g1", ServiceType.FA, credentials("c@x.com")))

        removed = run(ledger.clear_all("g1", ServiceType.NFA))

        assert removed == 2
        counts = run(ledger.count("g1"))
        assert ServiceType.NFA not in counts
        assert counts == {ServiceType.FA: 1}

    def test_clear_empty_service_returns_zero(self, ledger):
        assert run(ledger.clear_all("g1", ServiceType.XBOXGP)) == 0

    def test_clear_is_scoped_to_guild(self, ledger):
        run(ledger.bulk_add("g1", ServiceType.NFA, credentials("a@x.com")))
        run(ledger.bulk_add("g2", ServiceType.NFA, credentials("a@x.com")))

        run(ledger.clear_all("g1", ServiceType.NFA))

        assert run(ledger.count("g2")) == {ServiceType.NFA: 1}


class TestStatsAndTransactions:

    def test_stats_track_takes_and_inserts(self, ledger):
        result = run(ledger.bulk_add("g1", ServiceType.NFA, credentials("a@x.com", "b@x.com", "c@x.com")))

        for _ in range(2):
            account = run(ledger.take_random("g1", ServiceType.NFA))
            run(ledger.record_transaction("g1", "u1", ServiceType.NFA, account.email))

        stats = run(ledger.stats("g1"))
        assert stats.total_generated == 2
        assert stats.total_stock == result.succeeded - 2

    def test_empty_guild_stats(self, ledger):
        stats = run(ledger.stats("nobody"))
        assert stats.total_stock == 0
        assert stats.total_generated == 0

    def test_transactions_newest_first(self, ledger):
        run(ledger.record_transaction("g1", "u1", ServiceType.NFA, "first@x.com"))
        run(ledger.record_transaction("g1", "u2", ServiceType.FA, "second@x.com"))
        run(ledger.record_transaction("g2", "u3", ServiceType.FA, "elsewhere@x.com"))

        history = run(ledger.transactions("g1"))

        assert [t.account_email for t in history] == ["second@x.com", "first@x.com"]
        assert history[0].user_id == "u2"
        assert history[0].service_type is ServiceType.FA
        assert history[0].generated_at is not None


class TestGuildConfig:

    def test_configure_is_idempotent(self, ledger):
        run(ledger.configure("g1", "role-1"))
        first = run(ledger.get_config("g1"))
        run(ledger.configure("g1", "role-1"))

        assert run(ledger.get_config("g1")) == first == GuildConfig("g1", "role-1", None)

    def test_reconfigure_keeps_log_channel_unless_given(self, ledger):
        run(ledger.configure("g1", "role-1", "chan-1"))
        run(ledger.configure("g1", "role-2"))

        assert run(ledger.get_config("g1")) == GuildConfig("g1", "role-2", "chan-1")

        run(ledger.configure("g1", "role-2", "chan-2"))
        assert run(ledger.get_config("g1")).log_channel_id == "chan-2"

    def test_unknown_guild_has_no_config(self, ledger):
        assert run(ledger.get_config("g404")) is None

    def test_set_log_channel_requires_setup(self, ledger):
        with pytest.raises(NotConfigured):
            run(ledger.set_log_channel("g1", "chan-1"))

        assert run(ledger.get_config("g1")) is None

    def test_set_log_channel_updates_existing(self, ledger):
        run(ledger.configure("g1", "role-1"))
        run(ledger.set_log_channel("g1", "chan-9"))

        assert run(ledger.get_config("g1")).log_channel_id == "chan-9"

    @pytest.mark.parametrize("guild_id, role_id", [("", "role"), ("g1", ""), ("g1", "   "), (None, "role")])
    def test_configure_rejects_empty_identifiers(self, ledger, guild_id, role_id):
        with pytest.raises(ValueError):
            run(ledger.configure(guild_id, role_id))

    def test_initialize_twice_is_harmless(self, ledger):
        run(ledger.initialize())
        run(ledger.configure("g1", "role-1"))
        assert run(ledger.get_config("g1")).payout_role_id == "role-1"
