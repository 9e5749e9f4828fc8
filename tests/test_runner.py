import pytest

from stackupdater.runner import NOT_FOUND, TIMED_OUT, CommandRunner
from stackupdater.schemas import Target


class TestArgv:
    def test_ssh_is_batch_mode_with_connect_timeout(self):
        runner = CommandRunner(ssh_connect_timeout=10)

        argv = runner.argv_for(Target.remote("dainja", "192.168.4.99"), ["docker", "inspect", "sabnzbd"])

        assert argv == [
            "ssh", "-o", "BatchMode=yes", "-o", "ConnectTimeout=10",
            "dainja@192.168.4.99", "docker inspect sabnzbd",
        ]

    def test_local_argv_is_untouched(self):
        assert CommandRunner().argv_for(Target.local(), ["docker", "ps"]) == ["docker", "ps"]


class TestRun:
    @pytest.mark.asyncio
    async def test_captures_merged_output_and_exit_status(self):
        res = await CommandRunner().run(["sh", "-c", "echo one; echo two 1>&2; exit 3"])

        assert res.returncode == 3
        assert res.ok is False
        assert res.output.splitlines() == ["one", "two"]

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        res = await CommandRunner().run(["sleep", "5"], timeout=0.2)

        assert res.timed_out is True
        assert res.returncode == TIMED_OUT

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        res = await CommandRunner().run(["definitely-not-a-real-binary-xyz"])

        assert res.returncode == NOT_FOUND
        assert res.ok is False

    @pytest.mark.asyncio
    async def test_run_to_file(self, tmp_path):
        out = tmp_path / "out.bin"
        with open(out, "wb") as sink:
            res = await CommandRunner().run_to_file(["sh", "-c", "printf payload"], sink)

        assert res.ok is True
        assert out.read_bytes() == b"payload"
