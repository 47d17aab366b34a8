"""
Tests for the JSON file repository.
"""

import asyncio
import json

import pytest

from promptchain.models.execution import RunStatus, StepStatus
from promptchain.models.workflow import StepInput
from promptchain.persistence import JSONFileRepository, PostgresRepository, create_repository
from promptchain.config import Config


class TestWorkflows:
    """Workflow and step storage."""

    @pytest.mark.asyncio
    async def test_create_with_step_defaults(self, repository):
        workflow = await repository.create_workflow_with_steps(
            "Pipeline", None, [StepInput(prompt="first"), StepInput(name="Custom", retry_limit=5)]
        )

        steps = await repository.get_workflow_steps(workflow.id)
        assert workflow.description == ""
        assert [s.order_index for s in steps] == [0, 1]
        assert steps[0].name == "Step 1"
        assert steps[0].model == "kimi-k2-instruct-0905"
        assert steps[0].criteria_type == "always"
        assert steps[0].retry_limit == 3
        assert steps[0].context_mode == "full"
        assert steps[1].name == "Custom"
        assert steps[1].retry_limit == 5

    @pytest.mark.asyncio
    async def test_list_counts(self, repository):
        workflow = await repository.create_workflow_with_steps("A", "", [StepInput(), StepInput()])
        await repository.create_run(workflow.id)

        listed = await repository.list_workflows()
        assert len(listed) == 1
        assert listed[0].step_count == 2
        assert listed[0].run_count == 1

    @pytest.mark.asyncio
    async def test_replace_steps(self, repository):
        workflow = await repository.create_workflow_with_steps("A", "", [StepInput(), StepInput()])
        await repository.replace_workflow_steps(workflow.id, [StepInput(name="Only")])

        steps = await repository.get_workflow_steps(workflow.id)
        assert [s.name for s in steps] == ["Only"]

    @pytest.mark.asyncio
    async def test_delete_cascades(self, repository):
        workflow = await repository.create_workflow_with_steps("A", "", [StepInput()])
        steps = await repository.get_workflow_steps(workflow.id)
        run = await repository.create_run(workflow.id)
        await repository.create_step_execution(run.id, steps[0].id)

        assert await repository.delete_workflow(workflow.id) is True
        assert await repository.get_workflow(workflow.id) is None
        assert await repository.get_workflow_steps(workflow.id) == []
        assert await repository.get_run(run.id) is None
        assert await repository.get_run_step_executions(run.id) == []
        assert await repository.delete_workflow(workflow.id) is False


class TestRuns:
    """Runs, step executions and stats."""

    @pytest.mark.asyncio
    async def test_run_summary_and_step_details(self, repository):
        workflow = await repository.create_workflow_with_steps(
            "Flow", "", [StepInput(name="one"), StepInput(name="two")]
        )
        steps = await repository.get_workflow_steps(workflow.id)
        run = await repository.create_run(workflow.id)
        for step in reversed(steps):
            await repository.create_step_execution(run.id, step.id)

        first = await repository.get_step_execution(run.id, steps[0].id)
        await repository.update_step_execution(first.id, {"status": StepStatus.PASSED, "attempts": 1})

        summary = await repository.get_run(run.id)
        assert summary.workflow_name == "Flow"
        assert summary.status == "running"
        assert summary.total_steps == 2
        assert summary.passed_steps == 1

        details = await repository.get_run_step_executions(run.id)
        assert [d.step_name for d in details] == ["one", "two"]
        assert details[0].status == "passed"
        assert details[1].status == "pending"

    @pytest.mark.asyncio
    async def test_list_runs_paginates_newest_first(self, repository):
        workflow = await repository.create_workflow("A")
        ids = []
        for minute in range(3):
            run = await repository.create_run(workflow.id)
            await repository.update_run(run.id, {"started_at": f"2024-01-01T00:0{minute}:00+00:00"})
            ids.append(run.id)

        runs, total = await repository.list_runs(limit=2, offset=0)
        assert total == 3
        assert [r.id for r in runs] == [ids[2], ids[1]]

        runs, _ = await repository.list_runs(limit=2, offset=2)
        assert [r.id for r in runs] == [ids[0]]

    @pytest.mark.asyncio
    async def test_stats(self, repository):
        workflow = await repository.create_workflow("A")
        done = await repository.create_run(workflow.id)
        failed = await repository.create_run(workflow.id)
        await repository.create_run(workflow.id)
        await repository.update_run(done.id, {"status": RunStatus.COMPLETED, "total_cost": 0.3, "total_tokens": 30})
        await repository.update_run(failed.id, {"status": RunStatus.FAILED, "total_cost": 0.3, "total_tokens": 10})

        stats = await repository.get_stats()
        assert stats.total_runs == 3
        assert stats.completed_runs == 1
        assert stats.failed_runs == 1
        assert stats.total_tokens == 40
        assert stats.total_cost == pytest.approx(0.6)
        assert stats.avg_cost_per_run == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_empty_stats(self, repository):
        stats = await repository.get_stats()
        assert stats.total_runs == 0
        assert stats.avg_cost_per_run == 0.0

    @pytest.mark.asyncio
    async def test_unknown_ids(self, repository):
        assert await repository.get_run("missing") is None
        assert await repository.update_run("missing", {"status": "failed"}) is None
        assert await repository.update_step_execution("missing", {"attempts": 1}) is None


class TestFilePersistence:

    @pytest.mark.asyncio
    async def test_data_survives_reload(self, tmp_path):
        path = tmp_path / "data.json"
        store = JSONFileRepository(path)
        await store.init()
        assert path.exists()

        workflow = await store.create_workflow_with_steps("Saved", "desc", [StepInput(prompt="p")])

        reloaded = JSONFileRepository(path)
        await reloaded.init()
        loaded = await reloaded.get_workflow(workflow.id)
        assert loaded.name == "Saved"
        assert len(await reloaded.get_workflow_steps(workflow.id)) == 1

        document = json.loads(path.read_text())
        assert set(document) == {"workflows", "steps", "runs", "step_executions"}

    @pytest.mark.asyncio
    async def test_writes_run_off_the_event_loop(self, tmp_path, monkeypatch):
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
        store = JSONFileRepository(tmp_path / "data.json")
        await store.init()
        await store.create_workflow_with_steps("Saved", "", [StepInput()])

        assert offloaded
        assert set(offloaded) == {"_write"}

    @pytest.mark.asyncio
    async def test_concurrent_writes_are_all_kept(self, tmp_path):
        path = tmp_path / "data.json"
        store = JSONFileRepository(path)
        await store.init()

        created = await asyncio.gather(*[
            store.create_workflow_with_steps(f"Flow {i}", "", [StepInput()]) for i in range(8)
        ])

        reloaded = JSONFileRepository(path)
        await reloaded.init()
        listed = await reloaded.list_workflows()
        assert {w.id for w in listed} == {w.id for w in created}


class TestCreateRepository:

    def test_defaults_to_json_file(self, tmp_path):
        repo = create_repository(Config(database_url=None, data_file=str(tmp_path / "d.json")))
        assert isinstance(repo, JSONFileRepository)

    def test_postgres_url(self):
        repo = create_repository(Config(database_url="postgresql://u:p@localhost/db"))
        assert isinstance(repo, PostgresRepository)

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_repository(Config(database_url="mysql://localhost/db"))

    @pytest.mark.asyncio
    async def test_default_model_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEFAULT_MODEL", "kimi-k2p5")
        repo = create_repository(Config(database_url=None, data_file=str(tmp_path / "d.json")))
        await repo.init()

        workflow = await repo.create_workflow_with_steps(
            "Defaults", "", [StepInput(), StepInput(model="kimi-k2-instruct-0905")]
        )
        steps = await repo.get_workflow_steps(workflow.id)
        assert [s.model for s in steps] == ["kimi-k2p5", "kimi-k2-instruct-0905"]

    def test_postgres_gets_default_model(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MODEL", "kimi-k2p5")
        repo = create_repository(Config(database_url="postgresql://u:p@localhost/db"))
        assert repo.default_model == "kimi-k2p5"
