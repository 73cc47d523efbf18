"""
Concurrency tests for the WorkflowCoordinator.

Actions on one project are serialized by its lock; a writer outside the
lock is caught by the repository's version check and the action is retried
from a fresh load.  Threads are released together through a Barrier so the
race is real rather than sequential.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from threading import Barrier, Thread
from uuid import uuid4

import pytest

from mentorship_kernel.domain.escrow import PaymentStatus
from mentorship_kernel.domain.project import ProjectStatus
from mentorship_kernel.exceptions import ConcurrentModificationError, InvalidStateError
from mentorship_services.locking import ProjectLockRegistry
from mentorship_services.persistence import InMemoryWorkflowRepository
from mentorship_services.workflow_coordinator import WorkflowCoordinator
from tests.conftest import ProjectDriver


class ConflictingRepository(InMemoryWorkflowRepository):
    """Simulates another process writing just before each of our saves."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.save_attempts = 0

    def save(self, aggregate):
        self.save_attempts += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            stored = self.load(aggregate.project_id)
            super().save(replace(stored))
        return super().save(aggregate)


def _run_together(workers, count):
    barrier = Barrier(count)

    def run(index):
        barrier.wait()
        try:
            return workers(index)
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(run, range(count)))


@pytest.fixture
def conflicting_driver(gateway, notifier, clock, workflow_config, client, admin, mentor, student):
    def build():
        repository = ConflictingRepository(conflicts=0)
        coordinator = WorkflowCoordinator(
            repository, gateway, notifications=notifier, clock=clock,
            config=workflow_config, sleep=lambda seconds: None,
        )
        return repository, ProjectDriver(coordinator, client, admin, mentor, student)

    return build


class TestSameProjectRaces:
    def test_concurrent_iteration_submits(self, driver, coordinator, student):
        snapshot = driver.drive_to(ProjectStatus.IN_PROGRESS)

        results = _run_together(
            lambda i: coordinator.submit_iteration(student, snapshot.project_id, f"v{i}"), 2
        )

        errors = [r for r in results if isinstance(r, Exception)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateError)

        final = coordinator.get_snapshot(snapshot.project_id)
        assert len(final.iterations) == 1
        assert final.status == ProjectStatus.UNDER_MENTOR_REVIEW

    def test_concurrent_funding_charges_once(self, driver, coordinator, client, gateway):
        snapshot = driver.drive_to(ProjectStatus.PUBLISHED, funded=False)

        results = _run_together(lambda i: coordinator.fund_project(client, snapshot.project_id), 4)

        assert not [r for r in results if isinstance(r, Exception)]
        assert gateway.count("charge") == 1
        assert coordinator.get_snapshot(snapshot.project_id).escrow.status == PaymentStatus.ESCROWED

    def test_concurrent_project_numbers_are_unique(self, driver):
        results = _run_together(lambda i: driver.create(title=f"Project {i}"), 10)

        numbers = sorted(r.project.project_number for r in results)
        assert numbers == [f"MP-20260105-{n:04d}" for n in range(1, 11)]


class TestVersionConflictRetry:
    def test_conflict_is_retried(self, conflicting_driver, client, captured_logs):
        repository, driver = conflicting_driver()
        created = driver.create()
        repository.conflicts = 1

        submitted = driver.coordinator.submit_project(client, created.project_id)

        assert submitted.status == ProjectStatus.SUBMITTED
        # Our first save lost to the simulated writer (version 2); the retry wrote version 3
        assert submitted.version == 3
        assert repository.save_attempts == 2
        retries = [r for r in captured_logs() if r["event"] == "workflow_retry"]
        assert len(retries) == 1
        assert retries[0]["attempt"] == 1

    def test_retry_reuses_gateway_reference(self, conflicting_driver, client, gateway):
        repository, driver = conflicting_driver()
        snapshot = driver.drive_to(ProjectStatus.PUBLISHED, funded=False)
        repository.conflicts = 1

        funded = driver.coordinator.fund_project(client, snapshot.project_id)

        assert funded.escrow.status == PaymentStatus.ESCROWED
        charge_refs = [ref for op, ref in gateway.calls if op == "charge"]
        assert len(charge_refs) == 2
        assert len(gateway.charges) == 1

    def test_retries_exhausted(self, conflicting_driver, client, captured_logs):
        repository, driver = conflicting_driver()
        created = driver.create()
        repository.conflicts = 10

        with pytest.raises(ConcurrentModificationError) as exc_info:
            driver.coordinator.submit_project(client, created.project_id)

        assert exc_info.value.retriable
        assert repository.save_attempts == 3
        assert any(r["event"] == "workflow_retries_exhausted" for r in captured_logs())


class TestIndependentProjects:
    def test_projects_do_not_block_each_other(
        self, repository, gateway, clock, workflow_config, client
    ):
        locks = ProjectLockRegistry()
        coordinator = WorkflowCoordinator(
            repository, gateway, clock=clock, config=workflow_config, locks=locks,
        )
        projects = [coordinator.create_project(client, f"Project {i}", "") for i in range(6)]

        results = _run_together(
            lambda i: coordinator.submit_project(client, projects[i].project_id), 6
        )

        assert all(r.status == ProjectStatus.SUBMITTED for r in results)
        assert len(locks) == 0


class TestLockRegistry:
    def test_entry_dropped_when_released(self):
        locks = ProjectLockRegistry()
        pid = uuid4()
        with locks.hold(pid):
            assert len(locks) == 1
            assert locks.users(pid) == 1
        assert len(locks) == 0

    def test_entry_dropped_when_action_raises(self):
        locks = ProjectLockRegistry()
        with pytest.raises(InvalidStateError):
            with locks.hold(uuid4()):
                raise InvalidStateError("Project", "p-1", "draft", "boom")
        assert len(locks) == 0

    def test_waiter_shares_the_held_entry(self):
        locks = ProjectLockRegistry()
        pid = uuid4()
        order = []

        def waiter():
            with locks.hold(pid):
                order.append("waiter")

        with locks.hold(pid):
            thread = Thread(target=waiter)
            thread.start()
            deadline = time.monotonic() + 2
            while locks.users(pid) < 2 and time.monotonic() < deadline:
                time.sleep(0.001)
            assert locks.users(pid) == 2
            assert len(locks) == 1
            order.append("holder")
        thread.join(timeout=2)

        assert order == ["holder", "waiter"]
        assert len(locks) == 0

    def test_other_project_is_not_blocked(self):
        locks = ProjectLockRegistry()
        with locks.hold(uuid4()):
            with locks.hold(uuid4()):
                assert len(locks) == 2
        assert len(locks) == 0

    def test_many_projects_leave_nothing_behind(
        self, repository, gateway, clock, workflow_config, client
    ):
        locks = ProjectLockRegistry()
        coordinator = WorkflowCoordinator(
            repository, gateway, clock=clock, config=workflow_config, locks=locks,
        )
        for i in range(20):
            created = coordinator.create_project(client, f"Project {i}", "")
            coordinator.submit_project(client, created.project_id)
        assert len(locks) == 0
