"""Tests for the manage.py helper.

os.execvpe is patched, so no process is ever replaced.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from hcnix.config import clear_settings_cache
from hcnix.tools.manage import ManageError, build_manage_command, exec_manage, load_environment
from hcnix.unit_gen.errors import MissingRequiredSetting
from hcnix.unit_gen.generator import generate
from hcnix.unit_gen.models import HealthchecksConfig, HealthchecksSettings, PackagePaths

MANAGE = "/nix/store/abc-healthchecks/opt/healthchecks/manage.py"
SUDO = "/run/wrappers/bin/sudo"


@pytest.fixture(autouse=True)
def _clear_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


def make_config(tmp_path: Path, **overrides) -> HealthchecksConfig:
    return HealthchecksConfig(
        enable=overrides.pop("enable", True),
        package=PackagePaths(store_path="/nix/store/abc-healthchecks", python_path="/py"),
        environment_dir=str(tmp_path),
        settings=HealthchecksSettings(SECRET_KEY_FILE="/run/secrets/hc"),
        **overrides,
    )


def write_env_file(config: HealthchecksConfig) -> Path:
    env_file = generate(config).environment_file
    path = Path(env_file.path)
    path.write_text(env_file.content)
    return path


class TestBuildManageCommand:
    def test_same_user_runs_directly(self):
        argv = build_manage_command(
            MANAGE, "healthchecks", ["migrate"], current_user="healthchecks", sudo=SUDO
        )
        assert argv == [MANAGE, "migrate"]

    def test_other_user_goes_through_sudo(self):
        argv = build_manage_command(
            MANAGE, "healthchecks", ["createsuperuser"], current_user="root", sudo=SUDO
        )
        assert argv == [
            SUDO,
            "-u",
            "healthchecks",
            "--preserve-env",
            "--preserve-env=PYTHONPATH",
            MANAGE,
            "createsuperuser",
        ]

    def test_arguments_forwarded_verbatim(self):
        args = ["sendalerts", "--no-threads", "--num-workers=2"]
        argv = build_manage_command(MANAGE, "hc", args, current_user="hc", sudo=SUDO)
        assert argv[1:] == args


class TestLoadEnvironment:
    def test_reads_generated_file(self, tmp_path):
        path = write_env_file(make_config(tmp_path))
        env = load_environment(path)
        assert env["PYTHONPATH"] == "/py"
        assert env["SECRET_KEY_FILE"] == "/run/secrets/hc"
        assert env["DEBUG"] == "False"
        assert env["EMAIL_HOST_PASSWORD_FILE"] == ""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManageError, match="hcnix apply"):
            load_environment(tmp_path / "missing")


class TestExecManage:
    def test_execs_with_environment(self, tmp_path):
        config = make_config(tmp_path)
        write_env_file(config)

        with patch("hcnix.tools.manage.os.execvpe") as mock_exec:
            exec_manage(config, ["check"], current_user="healthchecks")

        file, argv, env = mock_exec.call_args[0]
        assert file == MANAGE
        assert argv == [MANAGE, "check"]
        assert env["STATIC_ROOT"] == "/var/lib/healthchecks/static"

    def test_switches_user_with_configured_sudo(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HCNIX_SUDO", "/usr/bin/sudo")
        config = make_config(tmp_path, user="monitor", group="monitor")
        write_env_file(config)

        with patch("hcnix.tools.manage.os.execvpe") as mock_exec:
            exec_manage(config, ["check"], current_user="root")

        argv = mock_exec.call_args[0][1]
        assert argv[:3] == ["/usr/bin/sudo", "-u", "monitor"]

    def test_disabled_config(self, tmp_path):
        with pytest.raises(ManageError, match="not enabled"):
            exec_manage(make_config(tmp_path, enable=False), ["check"], current_user="root")

    def test_not_activated(self, tmp_path):
        with (
            patch("hcnix.tools.manage.os.execvpe") as mock_exec,
            pytest.raises(ManageError),
        ):
            exec_manage(make_config(tmp_path), ["check"], current_user="root")
        mock_exec.assert_not_called()

    def test_invalid_config(self, tmp_path):
        config = HealthchecksConfig(enable=True, environment_dir=str(tmp_path))
        with pytest.raises(MissingRequiredSetting):
            exec_manage(config, ["check"], current_user="root")
