import json
from pathlib import Path

import pytest

from stackupdater.config import load_inventory, load_settings
from stackupdater.errors import ConfigError

EXAMPLE = Path(__file__).resolve().parent.parent / "examples" / "config.json"


class TestSettings:
    def test_defaults(self):
        settings = load_settings({})

        assert settings.settle_seconds == 10.0
        assert settings.ssh_connect_timeout == 10
        assert settings.log_dir == "/mnt/server/logs"
        assert settings.chat_webhook_url is None

    def test_overrides(self):
        settings = load_settings({
            "SETTLE_SECONDS": "2.5",
            "SSH_CONNECT_TIMEOUT": "5",
            "STACKUPDATER_CONFIG": "/tmp/inv.json",
            "CHAT_WEBHOOK_URL": "https://chat.example/hook",
        })

        assert settings.settle_seconds == 2.5
        assert settings.ssh_connect_timeout == 5
        assert settings.config_path == "/tmp/inv.json"
        assert settings.chat_webhook_url == "https://chat.example/hook"

    def test_bad_number(self):
        with pytest.raises(ConfigError):
            load_settings({"SETTLE_SECONDS": "soon"})


class TestInventory:
    def test_load_units(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "units": [
                {"directory": "/mnt/server/plex", "services": ["plex", "sonarr"]},
                {"directory": "/opt/npm", "services": ["nginx-proxy-manager"], "ssh_user": "ops", "ssh_host": "10.0.0.2"},
            ],
        }))

        units = load_inventory(str(path)).update_units()

        assert [u.label for u in units] == ["plex,sonarr", "nginx-proxy-manager@10.0.0.2"]
        assert units[0].target.is_remote is False
        assert units[1].target.ssh_destination == "ops@10.0.0.2"

    def test_blank_ssh_fields_mean_local(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "units": [{"directory": "/srv/plex", "services": ["plex"], "ssh_user": "", "ssh_host": " "}],
        }))

        unit = load_inventory(str(path)).update_units()[0]

        assert unit.target.is_remote is False
        assert unit.label == "plex"

    def test_example_inventory_loads(self):
        inventory = load_inventory(str(EXAMPLE))

        assert len(inventory.units) == 7
        assert inventory.backup.retention == 2
        assert inventory.check.remote[0].container == "sabnzbd"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_inventory(str(tmp_path / "absent.json"))

    @pytest.mark.parametrize("units", [
        [{"directory": "/srv/x", "services": []}],
        [{"directory": "/srv/x", "services": ["x"], "ssh_host": "10.0.0.2"}],
        [{"directory": "/srv/x", "services": ["x"], "ssh_user": "", "ssh_host": "10.0.0.2"}],
        [{"services": ["x"]}],
    ])
    def test_invalid_units(self, tmp_path, units):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"units": units}))

        with pytest.raises(ConfigError):
            load_inventory(str(path))

    def test_not_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("units: [")

        with pytest.raises(ConfigError):
            load_inventory(str(path))
