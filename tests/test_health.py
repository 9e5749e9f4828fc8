import json

import pytest

from stackupdater.errors import ProbeUnhealthy, ProbeUnreachable
from stackupdater.health import HealthProbe, parse_inspect, require_healthy
from stackupdater.runner import CommandResult
from stackupdater.schemas import HealthState, HealthStatus, RunningState, Target

from fakes import ScriptedRunner, local_unit, remote_unit


def inspect_output(status="running", health=None, image="sha256:abc"):
    state = {"Status": status}
    if health is not None:
        state["Health"] = {"Status": health, "FailingStreak": 0}
    return json.dumps([{"Id": "f00", "Image": image, "State": state}])


class TestParseInspect:
    def test_running_without_healthcheck(self):
        status = parse_inspect("plex", json.loads(inspect_output())[0])

        assert status.exists is True
        assert status.running_state == RunningState.RUNNING
        assert status.health_state == HealthState.NONE
        assert status.image_id == "sha256:abc"
        assert status.healthy is True

    @pytest.mark.parametrize(
        "docker_status,health,healthy",
        [
            ("running", "healthy", True),
            ("running", "starting", False),
            ("running", "unhealthy", False),
            ("exited", None, False),
            ("restarting", None, False),
        ],
    )
    def test_healthy_predicate(self, docker_status, health, healthy):
        status = parse_inspect("c", json.loads(inspect_output(docker_status, health))[0])

        assert status.healthy is healthy

    def test_state_mapping(self):
        assert HealthStatus.from_states("c", "exited", None).running_state == RunningState.STOPPED
        assert HealthStatus.from_states("c", "paused", None).running_state == RunningState.STOPPED
        assert HealthStatus.from_states("c", "restarting", None).running_state == RunningState.OTHER

    def test_require_healthy(self):
        with pytest.raises(ProbeUnhealthy):
            require_healthy(HealthStatus.missing("plex"))
        with pytest.raises(ProbeUnhealthy):
            require_healthy(HealthStatus.from_states("plex", "running", "unhealthy"))
        ok = HealthStatus.from_states("plex", "running", "healthy")
        assert require_healthy(ok) is ok


class TestProbe:
    @pytest.mark.asyncio
    async def test_local_probe_decodes_json(self):
        runner = ScriptedRunner([("inspect plex", CommandResult(0, inspect_output(health="healthy")))])
        probe = HealthProbe(runner, docker_bin="/usr/bin/docker")

        status = await probe.probe(Target.local(), "plex")

        assert status.healthy is True
        assert runner.calls[0]["argv"] == ["/usr/bin/docker", "inspect", "plex"]

    @pytest.mark.asyncio
    async def test_missing_container(self):
        runner = ScriptedRunner([("inspect", CommandResult(1, "Error: No such object: plex"))])
        probe = HealthProbe(runner, docker_bin="docker")

        status = await probe.probe(Target.local(), "plex")

        assert status.exists is False
        assert status.healthy is False

    @pytest.mark.asyncio
    async def test_ssh_failure_is_unreachable(self):
        runner = ScriptedRunner([("inspect", CommandResult(255, "Permission denied (publickey)."))])
        probe = HealthProbe(runner, docker_bin="docker")

        with pytest.raises(ProbeUnreachable):
            await probe.probe(Target.remote("ops", "10.0.0.9"), "sabnzbd")

    @pytest.mark.asyncio
    async def test_remote_probe_uses_plain_docker(self):
        runner = ScriptedRunner([("inspect", CommandResult(0, inspect_output()))])
        probe = HealthProbe(runner, docker_bin="/opt/docker/bin/docker")

        await probe.probe(Target.remote("ops", "10.0.0.9"), "sabnzbd")

        assert runner.calls[0]["argv"] == ["docker", "inspect", "sabnzbd"]
        assert runner.calls[0]["target"].ssh_host == "10.0.0.9"

    @pytest.mark.asyncio
    async def test_timeout_and_garbage_are_unreachable(self):
        probe = HealthProbe(ScriptedRunner([("inspect", CommandResult(124, "", timed_out=True))]), docker_bin="docker")
        with pytest.raises(ProbeUnreachable):
            await probe.probe(Target.local(), "plex")

        probe = HealthProbe(ScriptedRunner([("inspect", CommandResult(0, "<html>"))]), docker_bin="docker")
        with pytest.raises(ProbeUnreachable):
            await probe.probe(Target.local(), "plex")

    @pytest.mark.asyncio
    async def test_no_docker_cli(self):
        probe = HealthProbe(ScriptedRunner(), docker_bin=None)

        with pytest.raises(ProbeUnreachable):
            await probe.probe(Target.local(), "plex")


class TestUnitHealth:
    @pytest.mark.asyncio
    async def test_one_bad_service_fails_the_unit_but_all_are_probed(self):
        runner = ScriptedRunner([
            ("inspect sonarr", CommandResult(0, inspect_output("exited"))),
            ("inspect radarr", CommandResult(1, "Error: No such object: radarr")),
            ("inspect", CommandResult(0, inspect_output())),
        ])
        probe = HealthProbe(runner, docker_bin="docker")

        healthy = await probe.check_unit_health(local_unit("plex", "sonarr", "radarr", "tautulli"))

        assert healthy is False
        assert [c["argv"][-1] for c in runner.calls] == ["plex", "sonarr", "radarr", "tautulli"]

    @pytest.mark.asyncio
    async def test_unreachable_counts_as_unhealthy(self):
        runner = ScriptedRunner([("inspect", CommandResult(255, "ssh: connect to host 10.0.0.9 port 22: Connection timed out"))])
        probe = HealthProbe(runner, docker_bin="docker")

        assert await probe.check_unit_health(remote_unit("sabnzbd")) is False

    @pytest.mark.asyncio
    async def test_remote_unit_probes_first_service_only(self):
        runner = ScriptedRunner([("inspect", CommandResult(0, inspect_output()))])
        probe = HealthProbe(runner, docker_bin="docker")

        sample = await probe.sample_unit(remote_unit("nginx-proxy-manager", "db"))

        assert sample.healthy is True
        assert [c["argv"][-1] for c in runner.calls] == ["nginx-proxy-manager"]
        assert sample.image_ids() == {"nginx-proxy-manager": "sha256:abc"}
