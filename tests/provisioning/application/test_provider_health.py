"""Application tests for the scheduled supplier health check."""

from datetime import UTC, datetime, timedelta

from protean import current_domain
from provisioning.notify import get_notifier
from provisioning.provider.health import (
    JOB_NAME,
    LOCK_HELD_REASON,
    HealthStatus,
    run_provider_health_check,
)
from provisioning.provider.provider import CircuitState, Provider
from provisioning.sweeper import cron_lock as cron_lock_module
from provisioning.sweeper.cron_lock import CronLock, LockStatus, acquire_lock, current_holder, release_lock


def _clock(*readings):
    values = iter(readings)
    return lambda: next(values)


class _Broken:
    def health_check(self):
        raise ConnectionError("connect timeout")


class TestHealthGrading:
    def test_all_healthy(self, make_provider):
        make_provider("P1", priority=1)
        make_provider("P2", priority=2)

        report = run_provider_health_check()

        assert [r.provider_id for r in report.results] == ["P1", "P2"]
        assert report.count(HealthStatus.HEALTHY) == 2
        assert get_notifier().alerts == []

    def test_unhealthy_supplier_alerts_operators(self, make_provider):
        make_provider("P1", priority=1)
        make_provider("P2", priority=2).healthy = False

        report = run_provider_health_check()

        assert report.count(HealthStatus.UNHEALTHY) == 1
        alert = get_notifier().alerts[-1]
        assert alert["title"] == "Provider health alert"
        assert alert["message"] == "Healthy: 1 | Degraded: 0 | Unhealthy: 1"
        assert "Supplier P2" in alert["fields"]

    def test_slow_supplier_is_degraded(self, make_provider):
        make_provider("P1")
        report = run_provider_health_check(clock=_clock(0.0, 6.5))
        result = report.results[0]
        assert result.status == HealthStatus.DEGRADED
        assert result.response_time_ms == 6500
        assert get_notifier().alerts[-1]["message"] == "Healthy: 0 | Degraded: 1 | Unhealthy: 0"

    def test_adapter_error_graded_unhealthy(self, make_provider):
        from provisioning.supplier import register_supplier

        make_provider("P1", priority=1)
        make_provider("P2", priority=2)
        register_supplier("P1", _Broken())

        report = run_provider_health_check()

        assert report.results[0].status == HealthStatus.UNHEALTHY
        assert report.results[0].error_message == "connect timeout"
        assert report.results[1].status == HealthStatus.HEALTHY

    def test_inactive_supplier_not_checked(self, make_provider):
        supplier = make_provider("P1", is_active=False)
        report = run_provider_health_check()
        assert report.results == []
        assert supplier.calls == []

    def test_circuit_state_untouched(self, make_provider):
        make_provider("P1").healthy = False
        run_provider_health_check()
        provider = current_domain.repository_for(Provider).get("P1")
        assert provider.state == CircuitState.CLOSED
        assert provider.consecutive_failures == 0

    def test_alert_failure_does_not_fail_the_run(self, make_provider):
        make_provider("P1").healthy = False
        get_notifier().configure(should_fail=True)
        report = run_provider_health_check()
        assert report.count(HealthStatus.UNHEALTHY) == 1


class TestHealthCheckUnderLock:
    def test_skipped_while_another_instance_runs(self, make_provider):
        supplier = make_provider("P1")
        handle = acquire_lock(JOB_NAME)

        report = run_provider_health_check()

        assert report.skipped is True
        assert report.reason == LOCK_HELD_REASON
        assert report.held_by == handle.instance_id
        assert supplier.calls == []
        release_lock(handle)

    def test_lock_released_afterwards(self, make_provider):
        make_provider("P1")
        run_provider_health_check()
        assert current_holder(JOB_NAME) is None

    def test_lock_extended_after_each_supplier(self, make_provider, monkeypatch):
        make_provider("P1", priority=1)
        make_provider("P2", priority=2)
        extended = []
        original = cron_lock_module.LockHandle.extend

        def recording_extend(handle, ttl_seconds=None):
            extended.append(handle.job_name)
            return original(handle, ttl_seconds)

        monkeypatch.setattr(cron_lock_module.LockHandle, "extend", recording_extend)
        run_provider_health_check()
        assert extended == [JOB_NAME, JOB_NAME]

    def test_expired_locks_cleaned_up(self, make_provider):
        make_provider("P1")
        acquire_lock("abandoned-job")
        repo = current_domain.repository_for(CronLock)
        record = repo.get("abandoned-job")
        record.expires_at = datetime.now(UTC) - timedelta(minutes=1)
        repo.add(record)

        report = run_provider_health_check()

        assert report.expired_locks == 1
        assert repo.get("abandoned-job").status == LockStatus.EXPIRED.value
