"""Unit tests for reports/store.py -- instances, runs and scoped report rows."""

import pytest

from core.models import Scope
from reports.models import RUN_COMPLETED, RUN_FAILED, RUN_PENDING, Instance
from reports.store import ReportStore


@pytest.fixture
def store():
    s = ReportStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def instance_id(store):
    return store.create_instance(Instance(name="Prod Environment", description="Production estate", created_by="su"))


class TestInstances:
    def test_create_and_get(self, store, instance_id):
        instance = store.get_instance(instance_id)
        assert instance.name == "Prod Environment"
        assert instance.description == "Production estate"
        assert instance.status == "active"
        assert instance.created_at

    def test_list_newest_first(self, store, instance_id):
        second = store.create_instance(Instance(name="Staging"))
        assert [i.id for i in store.list_instances()] == [second, instance_id]

    def test_update_instance(self, store, instance_id):
        assert store.update_instance(instance_id, name="Production", description="")
        assert store.get_instance(instance_id).name == "Production"

    def test_update_missing_instance(self, store):
        assert store.update_instance(999, name="x") is False

    def test_update_unknown_field_raises(self, store, instance_id):
        with pytest.raises(ValueError):
            store.update_instance(instance_id, created_by="someone")


class TestRuns:
    def test_run_number_counts_per_instance(self, store, instance_id):
        other = store.create_instance(Instance(name="Other"))
        first = store.create_run(instance_id)
        second = store.create_run(instance_id)
        foreign = store.create_run(other)
        assert (first.run_number, second.run_number, foreign.run_number) == (1, 2, 1)

    def test_new_run_is_pending(self, store, instance_id):
        run = store.create_run(instance_id, source_filename="scan.xlsx")
        stored = store.get_run(run.id)
        assert stored.status == RUN_PENDING
        assert stored.source_filename == "scan.xlsx"

    def test_latest_run_ignores_incomplete_runs(self, store, instance_id):
        completed = store.create_run(instance_id, status=RUN_COMPLETED)
        failed = store.create_run(instance_id)
        store.set_run_status(failed.id, RUN_FAILED)
        store.create_run(instance_id)
        assert store.latest_run(instance_id).id == completed.id

    def test_latest_run_none_without_completed_runs(self, store, instance_id):
        store.create_run(instance_id)
        assert store.latest_run(instance_id) is None

    def test_list_runs_oldest_first(self, store, instance_id):
        ids = [store.create_run(instance_id).id for _ in range(3)]
        assert [r.id for r in store.list_runs(instance_id)] == ids

    def test_run_belongs_to(self, store, instance_id):
        other = store.create_instance(Instance(name="Other"))
        run = store.create_run(instance_id)
        assert store.run_belongs_to(run.id, instance_id)
        assert not store.run_belongs_to(run.id, other)
        assert not store.run_belongs_to(12345, instance_id)


class TestReportRows:
    def test_rows_are_isolated_by_run(self, store, instance_id):
        run_a = store.create_run(instance_id, status=RUN_COMPLETED)
        run_b = store.create_run(instance_id, status=RUN_COMPLETED)
        store.insert_rows("risk_summary", Scope(instance_id, run_a.id), [{"severity": "High", "count": 3}])
        store.insert_rows("risk_summary", Scope(instance_id, run_b.id), [{"severity": "Low", "count": 1}])
        rows = store.fetch_rows("risk_summary", Scope(instance_id, run_a.id))
        assert [r["severity"] for r in rows] == ["High"]
        assert rows[0]["run_id"] == run_a.id

    def test_fetch_orders_and_limits(self, store, instance_id):
        scope = Scope(instance_id, store.create_run(instance_id).id)
        store.insert_rows(
            "cve_summary",
            scope,
            [{"cve": "CVE-1", "count": 1}, {"cve": "CVE-2", "count": 9}, {"cve": "CVE-3", "count": 5}],
        )
        rows = store.fetch_rows("cve_summary", scope, (("count", True),), limit=2)
        assert [r["cve"] for r in rows] == ["CVE-2", "CVE-3"]

    def test_rows_with_different_keys(self, store, instance_id):
        scope = Scope(instance_id, store.create_run(instance_id).id)
        store.insert_rows("cve_summary", scope, [{"cve": "CVE-1"}, {"cve": "CVE-2", "count": 4}])
        rows = store.fetch_rows("cve_summary", scope)
        assert rows[0]["count"] is None
        assert rows[1]["count"] == 4

    def test_scope_columns_come_from_scope(self, store, instance_id):
        scope = Scope(instance_id, store.create_run(instance_id).id)
        with pytest.raises(ValueError):
            store.insert_rows("risk_summary", scope, [{"severity": "High", "run_id": 999}])

    def test_count_rows_with_filters(self, store, instance_id):
        scope = Scope(instance_id, store.create_run(instance_id).id)
        store.insert_rows(
            "exploitability_scoring",
            scope,
            [
                {"cve": "CVE-1", "kev_listed": True, "exploitability_score": 9.8},
                {"cve": "CVE-2", "kev_listed": False, "exploitability_score": 7.0},
                {"cve": "CVE-3", "kev_listed": False, "exploitability_score": 2.0},
            ],
        )
        assert store.count_rows("exploitability_scoring", scope) == 3
        assert store.count_rows("exploitability_scoring", scope, equals={"kev_listed": True}) == 1
        assert store.count_rows("exploitability_scoring", scope, at_least={"exploitability_score": 7.0}) == 2

    def test_fetch_instance_rows_spans_runs(self, store, instance_id):
        for count in (1, 2):
            scope = Scope(instance_id, store.create_run(instance_id).id)
            store.insert_rows("cve_summary", scope, [{"cve": "CVE-1", "count": count}])
        assert [r["count"] for r in store.fetch_instance_rows("cve_summary", instance_id)] == [1, 2]

    def test_unknown_table_raises(self, store, instance_id):
        with pytest.raises(ValueError):
            store.fetch_rows("users", Scope(instance_id, 1))

    def test_unknown_order_column_raises(self, store, instance_id):
        with pytest.raises(ValueError):
            store.fetch_rows("risk_summary", Scope(instance_id, 1), (("nope; DROP TABLE runs", True),))

    def test_incomplete_scope_raises(self, store, instance_id):
        with pytest.raises(ValueError):
            store.fetch_rows("risk_summary", Scope(instance_id, None))

    def test_ping(self, store):
        assert store.ping() is True
