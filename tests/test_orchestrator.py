"""
Tests for the orchestrator — sequencing, resume, gates and rollback.
"""

import json

import pytest

from hoststack.adapters.shell.command import CommandResult
from hoststack.core.engine.orchestrator import Orchestrator, PreflightReport
from hoststack.core.engine.step import ScriptedPrompter, Step
from hoststack.core.errors import HealthCheckFailure, PreconditionFailure
from hoststack.core.models.compensation import RunCallback, Tier
from hoststack.core.models.state import InstallationState, RunStatus, StepStatus
from hoststack.core.models.step import StepResult
from hoststack.core.persistence.audit import RunLedger
from hoststack.core.persistence.state_file import default_state_path, load_state, save_state
from hoststack.steps.firewall import FirewallStep, required_rules
from hoststack.steps.network import NetworkStep

FLAGS = ["runtime_ready", "network_ready", "firewall_ready", "certificate_ready", "keys_ready"]


class FakeStep(Step):
    """Records runs and undos into a shared log."""

    def __init__(self, name, flag, log, *, result=None, done=False, raises=None, allows_degraded=False):
        self.name = name
        self.title = name
        self.flag = flag
        self.log = log
        self.result = result
        self.done = done
        self.raises = raises
        self.allows_degraded = allows_degraded
        self.seen_inputs = None

    def probe(self, ctx):
        return self.done

    def resume_outputs(self, ctx):
        return {f"{self.name}_out": "resumed"}

    def execute(self, ctx):
        self.log.append(f"run:{self.name}")
        self.seen_inputs = dict(ctx.inputs)
        ctx.registry.register(
            f"undo {self.name}",
            RunCallback(name=self.name, callback=lambda: self.log.append(f"undo:{self.name}")),
        )
        if self.raises is not None:
            raise self.raises
        if self.result is not None:
            return self.result
        self.done = True
        return StepResult.success(**{f"{self.name}_out": "fresh"})


def _steps(log, n=5, **overrides):
    steps = [FakeStep(f"s{i}", FLAGS[i], log) for i in range(n)]
    for index, attrs in overrides.items():
        for key, value in attrs.items():
            setattr(steps[int(index[1:])], key, value)
    return steps


@pytest.fixture
def orchestrate(config, host, facts):
    def make(steps, *, answers=(), assume_yes=True, preflight=None, busy=()):
        prompter = ScriptedPrompter(answers)
        orch = Orchestrator(
            config,
            host,
            steps,
            preflight=preflight or (lambda: PreflightReport(facts=facts, busy_ports=list(busy))),
            prompter=prompter,
            assume_yes=assume_yes,
        )
        return orch, prompter

    return make


class TestSequencing:
    def test_all_steps_succeed(self, orchestrate, config):
        log: list[str] = []
        orch, _ = orchestrate(_steps(log))

        report = orch.run()

        assert report.ok
        assert report.exit_code == 0
        assert log == [f"run:s{i}" for i in range(5)]
        assert all(s == StepStatus.SUCCEEDED for s in report.steps.values())
        assert len(orch.registry) == 0

        state = load_state(default_state_path(config.paths.state_dir))
        assert all(state.is_set(f) for f in FLAGS)
        assert state.last_run.status == "completed"
        assert config.paths.summary_file.is_file()

    def test_outputs_flow_to_later_steps(self, orchestrate):
        log: list[str] = []
        steps = _steps(log, n=3)
        orch, _ = orchestrate(steps)
        orch.run()
        assert steps[2].seen_inputs == {"s0_out": "fresh", "s1_out": "fresh"}

    def test_fail_stops_sequencing(self, orchestrate, config):
        """Later steps never run; every registered undo runs, newest first."""
        log: list[str] = []
        steps = _steps(log, s2={"result": StepResult.failure("boom")})
        orch, _ = orchestrate(steps)

        report = orch.run()

        assert report.status == RunStatus.ROLLED_BACK
        assert report.exit_code == 1
        assert report.failed_step == "s2"
        assert report.error == "boom"
        assert log == ["run:s0", "run:s1", "run:s2", "undo:s2", "undo:s1", "undo:s0"]
        assert report.steps["s3"] == StepStatus.PENDING
        assert report.rollback is not None and report.rollback.clean

        state = load_state(default_state_path(config.paths.state_dir))
        assert not state.runtime_ready
        assert not state.network_ready
        assert state.last_run.failed_step == "s2"

    @pytest.mark.parametrize("error", [
        RuntimeError("unexpected"),
        HealthCheckFailure("s1", "never healthy"),
        KeyboardInterrupt(),
    ])
    def test_raised_errors_roll_back(self, orchestrate, error):
        log: list[str] = []
        orch, _ = orchestrate(_steps(log, n=3, s1={"raises": error}))

        report = orch.run()

        assert report.status == RunStatus.ROLLED_BACK
        assert report.exit_code == 1
        assert "run:s2" not in log
        assert log[-2:] == ["undo:s1", "undo:s0"]

    def test_interrupt_while_checking_next_step(self, orchestrate, config):
        log: list[str] = []
        steps = _steps(log, n=3)

        class InterruptedProbe(FakeStep):
            def probe(self, ctx):
                raise KeyboardInterrupt

        steps[1] = InterruptedProbe("s1", FLAGS[1], log)
        orch, _ = orchestrate(steps)

        report = orch.run()

        assert report.status == RunStatus.ROLLED_BACK
        assert report.failed_step == "s1"
        assert report.error == "interrupted by operator"
        assert log == ["run:s0", "undo:s0"]
        assert report.steps["s2"] == StepStatus.PENDING

        (record,) = RunLedger.in_dir(config.paths.state_dir).read_all()
        assert record.status == "rolled_back"
        assert record.failed_step == "s1"
        assert not load_state(default_state_path(config.paths.state_dir)).runtime_ready

    def test_resume_error_rolls_back(self, orchestrate):
        log: list[str] = []
        steps = _steps(log, n=3)

        class BrokenResume(FakeStep):
            def resume_outputs(self, ctx):
                raise ValueError("unreadable credentials")

        steps[1] = BrokenResume("s1", FLAGS[1], log, done=True)
        orch, _ = orchestrate(steps)

        report = orch.run()

        assert report.status == RunStatus.ROLLED_BACK
        assert report.exit_code == 1
        assert "unreadable credentials" in report.error
        assert log == ["run:s0", "undo:s0"]

    def test_compensation_failure_does_not_stop_rollback(self, orchestrate, config):
        log: list[str] = []
        steps = _steps(log, n=3, s2={"result": StepResult.failure("x")})

        class Exploding(FakeStep):
            def execute(self, ctx):
                ctx.registry.register(
                    "explode", RunCallback(name="explode", callback=lambda: 1 / 0), Tier.CRITICAL,
                )
                return super().execute(ctx)

        steps[1] = Exploding("s1", FLAGS[1], log)
        orch, _ = orchestrate(steps)

        report = orch.run()

        assert log[-3:] == ["undo:s2", "undo:s1", "undo:s0"]
        assert len(report.rollback.failed) == 1

    def test_ledger_records_each_run(self, orchestrate, config):
        log: list[str] = []
        orchestrate(_steps(log, n=2))[0].run()
        orchestrate(_steps(log, n=2))[0].run()
        records = RunLedger.in_dir(config.paths.state_dir).read_all()
        assert len(records) == 2
        assert all(r.status == "completed" for r in records)


class TestResume:
    def test_completed_steps_are_skipped(self, orchestrate, config):
        """Done steps skip, register nothing, and republish their outputs."""
        state = InstallationState(runtime_ready=True, network_ready=True)
        save_state(state, default_state_path(config.paths.state_dir))

        log: list[str] = []
        steps = _steps(log, s0={"done": True}, s1={"done": True})
        orch, _ = orchestrate(steps)

        report = orch.run()

        assert report.ok
        assert log == ["run:s2", "run:s3", "run:s4"]
        assert report.steps["s0"] == StepStatus.SKIPPED
        assert report.steps["s1"] == StepStatus.SKIPPED
        assert steps[2].seen_inputs == {"s0_out": "resumed", "s1_out": "resumed"}

    def test_rollback_only_undoes_this_run(self, orchestrate):
        log: list[str] = []
        steps = _steps(log, s0={"done": True}, s2={"result": StepResult.failure("x")})
        orch, _ = orchestrate(steps)

        orch.run()

        assert "undo:s0" not in log
        assert log[-2:] == ["undo:s2", "undo:s1"]

    def test_stale_flag_reruns_step(self, orchestrate, config):
        save_state(InstallationState(runtime_ready=True), default_state_path(config.paths.state_dir))
        log: list[str] = []
        orch, _ = orchestrate(_steps(log, n=2))
        orch.run()
        assert log == ["run:s0", "run:s1"]

    def test_state_file_is_json(self, orchestrate, config):
        log: list[str] = []
        orchestrate(_steps(log, n=1))[0].run()
        data = json.loads(default_state_path(config.paths.state_dir).read_text())
        assert data["runtime_ready"] is True


class TestDegradedContinue:
    def _unhealthy(self):
        return StepResult.health_failure("panel not answering", s1_out="partial")

    def test_accept(self, orchestrate, config):
        log: list[str] = []
        steps = _steps(log, n=3, s1={"result": self._unhealthy(), "allows_degraded": True})
        orch, prompter = orchestrate(steps, answers=[True])

        report = orch.run()

        assert report.status == RunStatus.COMPLETED
        assert report.exit_code == 0
        assert report.steps["s1"] == StepStatus.DEGRADED
        assert prompter.questions == ["Continue despite health check failure?"]
        assert log == ["run:s0", "run:s1", "run:s2"]
        assert steps[2].seen_inputs["s1_out"] == "partial"

        state = load_state(default_state_path(config.paths.state_dir))
        assert state.network_ready is False

    def test_decline_rolls_back(self, orchestrate):
        """A health timeout the operator declines rolls back and exits non-zero."""
        log: list[str] = []
        steps = _steps(log, n=3, s1={"result": self._unhealthy(), "allows_degraded": True})
        orch, _ = orchestrate(steps, answers=[False])

        report = orch.run()

        assert report.status == RunStatus.ROLLED_BACK
        assert report.exit_code == 1
        assert log == ["run:s0", "run:s1", "undo:s1", "undo:s0"]

    def test_raised_health_failure_offers_continue(self, orchestrate):
        log: list[str] = []
        steps = _steps(
            log, n=2, s1={"raises": HealthCheckFailure("s1", "slow"), "allows_degraded": True},
        )
        orch, prompter = orchestrate(steps, answers=[True])
        report = orch.run()
        assert report.steps["s1"] == StepStatus.DEGRADED
        assert prompter.questions

    def test_not_offered_without_opt_in(self, orchestrate):
        log: list[str] = []
        orch, prompter = orchestrate(_steps(log, n=2, s1={"result": self._unhealthy()}), answers=[True])
        report = orch.run()
        assert report.status == RunStatus.ROLLED_BACK
        assert prompter.questions == []

    def test_later_failure_still_undoes_degraded_step(self, orchestrate):
        log: list[str] = []
        steps = _steps(
            log, n=3,
            s1={"result": self._unhealthy(), "allows_degraded": True},
            s2={"result": StepResult.failure("later")},
        )
        orch, _ = orchestrate(steps, answers=[True])
        orch.run()
        assert log[-3:] == ["undo:s2", "undo:s1", "undo:s0"]


class TestGates:
    def test_decline_confirmation_exits_zero(self, orchestrate, config):
        log: list[str] = []
        orch, prompter = orchestrate(_steps(log), answers=[False], assume_yes=False)

        report = orch.run()

        assert report.status == RunStatus.ABORTED
        assert report.exit_code == 0
        assert log == []
        assert prompter.questions == ["Proceed with installation?"]
        (record,) = RunLedger.in_dir(config.paths.state_dir).read_all()
        assert record.status == "aborted"

    def test_busy_ports_prompt(self, orchestrate):
        log: list[str] = []
        orch, prompter = orchestrate(
            _steps(log), answers=[False], assume_yes=False, busy=[("panel", 8443)],
        )
        report = orch.run()
        assert report.status == RunStatus.ABORTED
        assert report.exit_code == 0
        assert prompter.questions == ["Continue anyway?"]

    def test_assume_yes_skips_gates(self, orchestrate):
        log: list[str] = []
        orch, prompter = orchestrate(_steps(log, n=1), busy=[("panel", 8443)])
        assert orch.run().ok
        assert prompter.questions == []

    def test_precondition_failure(self, orchestrate):
        log: list[str] = []

        def preflight():
            raise PreconditionFailure("hoststack must run as root")

        orch, _ = orchestrate(_steps(log), preflight=preflight)
        report = orch.run()

        assert report.status == RunStatus.ABORTED
        assert report.exit_code == 1
        assert "root" in report.error
        assert log == []


class TestScenarios:
    def _docker_networks(self, runner):
        networks: set[str] = set()

        def inspect(cmd):
            return CommandResult(cmd=cmd, returncode=0 if cmd[3] in networks else 1)

        def create(cmd):
            networks.add(cmd[-1])
            return CommandResult(cmd=cmd)

        def remove(cmd):
            networks.discard(cmd[3])
            return CommandResult(cmd=cmd)

        runner.on("docker network inspect", handler=inspect)
        runner.on("docker network create", handler=create)
        runner.on("docker network rm", handler=remove)
        return networks

    def test_network_then_firewall_failure(self, orchestrate, runner, make_ufw):
        """Network is removed once; no rule deletes; the access rule stays."""
        networks = self._docker_networks(runner)
        ufw = make_ufw(rules=[(22, "tcp")])
        ufw.unlisted.add(22)

        orch, _ = orchestrate([NetworkStep(), FirewallStep()])
        report = orch.run()

        assert report.failed_step == "firewall"
        assert report.exit_code == 1
        assert runner.count("docker network rm marzban-network") == 1
        assert networks == set()
        assert not runner.called("ufw --force delete")
        assert not runner.called("ufw default")
        assert (22, "tcp") in ufw.rules()

    def test_second_run_resumes_after_network_and_firewall(
        self, orchestrate, runner, make_ufw, config, ctx,
    ):
        """Network and firewall are probed done and skipped; the next step runs."""
        networks = self._docker_networks(runner)
        networks.add("marzban-network")
        make_ufw(rules=[(p, proto) for p, proto, _ in required_rules(ctx.config)] + [(22, "tcp")], active=True)
        save_state(
            InstallationState(network_ready=True, firewall_ready=True),
            default_state_path(config.paths.state_dir),
        )
        log: list[str] = []
        certificate = FakeStep("certificate", "certificate_ready", log)

        orch, _ = orchestrate([NetworkStep(), FirewallStep(), certificate])
        report = orch.run()

        assert report.ok
        assert report.steps["network"] == StepStatus.SKIPPED
        assert report.steps["firewall"] == StepStatus.SKIPPED
        assert log == ["run:certificate"]
        assert not runner.called("docker network create")
        assert not runner.called("ufw --force enable")
        assert certificate.seen_inputs["network_name"] == "marzban-network"
        assert certificate.seen_inputs["access_port"] == 22
