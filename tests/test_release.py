"""Tests for the release gate: publish mode selection and its safety properties."""

import pytest
from conftest import FakeExecutor, RecordingPublisher

from releaseci.dsl import job, publish, sh, wf
from releaseci.errors import ConfigurationError, WorkflowError
from releaseci.matrix import expand
from releaseci.model import TaskOutcome
from releaseci.release import (
    DryRunPublish,
    RealPublish,
    publish_command,
    release_job,
    select_publish_mode,
)
from releaseci.runner import run_pipeline
from releaseci.tasks import TaskRunner
from releaseci.trigger import Trigger, TriggerKind
from releaseci.workflows.crate import workflow as crate_workflow

VERIFICATION_JOBS = ["check", "test", "fmt", "clippy", "tarpaulin"]


def trigger(kind, secret=True, ref="refs/heads/main"):
    return Trigger(kind=kind, ref=ref, ref_name=ref.rsplit("/", 1)[-1], is_secret_available=secret)


class TestSelectPublishMode:
    def test_tag_push_publishes_for_real(self):
        mode = select_publish_mode(trigger(TriggerKind.PUSH_TAG, ref="refs/tags/1.2.3"), "token")
        assert isinstance(mode, RealPublish)
        assert mode.credential == "token"
        assert mode.side_effect is True

    @pytest.mark.parametrize("kind", [TriggerKind.PUSH_BRANCH, TriggerKind.PULL_REQUEST])
    def test_everything_else_is_a_dry_run(self, kind):
        assert isinstance(select_publish_mode(trigger(kind), "token"), DryRunPublish)
        assert isinstance(select_publish_mode(trigger(kind), None), DryRunPublish)

    def test_no_trigger_is_a_dry_run(self):
        assert isinstance(select_publish_mode(None, "token"), DryRunPublish)

    @pytest.mark.parametrize("credential", [None, ""])
    def test_tag_push_without_secret_is_configuration_error(self, credential):
        with pytest.raises(ConfigurationError) as exc:
            select_publish_mode(trigger(TriggerKind.PUSH_TAG, ref="refs/tags/1.2.3"), credential)
        assert exc.value.kind == "configuration-error"
        assert "PUBLISH_SECRET" in exc.value.message

    def test_event_without_secret_refuses_even_with_credential(self):
        tag = trigger(TriggerKind.PUSH_TAG, secret=False, ref="refs/tags/1.2.3")
        with pytest.raises(ConfigurationError, match="triggering event"):
            select_publish_mode(tag, "token")

    def test_credential_not_in_repr(self):
        assert "token" not in repr(RealPublish(credential="token"))

    def test_publish_command(self):
        assert publish_command(RealPublish("t")) == "cargo publish"
        assert publish_command(DryRunPublish()) == "cargo publish --dry-run"


class TestReleaseJob:
    def test_is_a_gate_needing_all_jobs(self):
        gate = release_job(["check", "test", "check"])
        assert gate.release_gate is True
        assert gate.needs == ["check", "test"]
        assert gate.tasks[-1].kind.value == "publish"

    def test_cannot_need_itself(self):
        with pytest.raises(ValueError):
            release_job(["publish"])


class TestGateSafety:
    @pytest.mark.parametrize("failing", VERIFICATION_JOBS)
    def test_any_failing_verification_job_skips_the_gate(self, failing, repo, secret_env):
        executor = FakeExecutor(fail=lambda cmd, env: cmd == f"cargo {failing}" or cmd.startswith(f"cargo {failing} "))
        publisher = RecordingPublisher()
        result = run_pipeline(
            crate_workflow(),
            trigger(TriggerKind.PUSH_TAG, ref="refs/tags/1.2.3"),
            repo_root=repo,
            environ=secret_env,
            executor=executor,
            publisher=publisher,
        )
        assert result.job(failing).status == "failed"
        assert result.job("publish").status == "skipped"
        assert result.status == "failed"
        assert publisher.modes == []
        assert publisher.side_effect is False

    @pytest.mark.parametrize("kind", [TriggerKind.PUSH_BRANCH, TriggerKind.PULL_REQUEST])
    def test_non_tag_triggers_never_cause_a_side_effect(self, kind, repo, secret_env):
        publisher = RecordingPublisher()
        result = run_pipeline(
            crate_workflow(),
            trigger(kind),
            repo_root=repo,
            environ=secret_env,
            executor=FakeExecutor(),
            publisher=publisher,
        )
        assert result.status == "succeeded"
        assert [type(m) for m in publisher.modes] == [DryRunPublish]
        assert publisher.side_effect is False

    def test_dry_run_command_never_sees_the_token(self, repo, secret_env):
        executor = FakeExecutor()
        env = {**secret_env, "CARGO_REGISTRY_TOKEN": "inherited"}
        run_pipeline(crate_workflow(), trigger(TriggerKind.PUSH_BRANCH), repo_root=repo, environ=env, executor=executor)
        (publish_env,) = executor.envs_for("cargo publish")
        assert executor.commands()[-1] == "cargo publish --dry-run"
        assert "CARGO_REGISTRY_TOKEN" not in publish_env
        assert "PUBLISH_SECRET" not in publish_env

    def test_real_publish_exports_the_token(self, repo, secret_env):
        executor = FakeExecutor()
        run_pipeline(
            crate_workflow(),
            trigger(TriggerKind.PUSH_TAG, ref="refs/tags/1.2.3"),
            repo_root=repo,
            environ=secret_env,
            executor=executor,
        )
        (publish_env,) = executor.envs_for("cargo publish")
        assert executor.commands()[-1] == "cargo publish"
        assert publish_env["CARGO_REGISTRY_TOKEN"] == "s3cr3t"

    def test_publish_in_a_verification_job_is_rejected_before_running(self, repo, secret_env):
        jobs = wf(
            job("check", sh("check", "cargo check")),
            job("sneaky", publish()),
            job("fails", sh("fails", "cargo fails")),
            release=release_job(["check", "sneaky", "fails"]),
        )
        executor = FakeExecutor(fail=lambda cmd, env: cmd == "cargo fails")
        publisher = RecordingPublisher()
        with pytest.raises(WorkflowError):
            run_pipeline(
                jobs,
                trigger(TriggerKind.PUSH_TAG, ref="refs/tags/1.2.3"),
                repo_root=repo,
                environ=secret_env,
                executor=executor,
                publisher=publisher,
            )
        assert executor.calls == []
        assert publisher.modes == []

    def test_task_runner_refuses_publish_outside_the_gate(self, repo, secret_env):
        publisher = RecordingPublisher()
        runner = TaskRunner(
            repo_root=repo,
            trigger=trigger(TriggerKind.PUSH_TAG, ref="refs/tags/1.2.3"),
            environ=secret_env,
            executor=FakeExecutor(),
            publisher=publisher,
        )
        (inst,) = expand(job("sneaky", publish()))
        result = runner.run(inst.template.tasks[0], runner.context(inst))
        assert result.outcome is TaskOutcome.CONFIGURATION_ERROR
        assert "outside the release gate" in result.message
        assert publisher.modes == []
