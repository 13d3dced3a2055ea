"""Tests for environment file generation."""

import pytest

from hcnix.unit_gen.environment import (
    ENVIRONMENT_FILE_PREFIX,
    build_environment_file,
    environment_variables,
    to_key_value,
)
from hcnix.unit_gen.errors import ConfigurationError
from hcnix.unit_gen.models import HealthchecksConfig, HealthchecksSettings, PackagePaths

PACKAGE = PackagePaths(
    store_path="/nix/store/abc-healthchecks",
    python_path="/nix/store/xyz-python3-env/lib/python3.11/site-packages",
)


def make_config(data_dir: str = "/var/lib/healthchecks", **settings) -> HealthchecksConfig:
    settings.setdefault("SECRET_KEY_FILE", "/run/secrets/healthchecks-key")
    return HealthchecksConfig(
        enable=True,
        data_dir=data_dir,
        settings=HealthchecksSettings.model_validate(settings),
    )


def env_lines(config: HealthchecksConfig) -> list[str]:
    return build_environment_file(config, PACKAGE).content.splitlines()


class TestToKeyValue:
    def test_one_line_per_key(self):
        assert to_key_value({"A": "1", "B": "two"}) == "A=1\nB=two\n"

    def test_sorted_by_key(self):
        assert to_key_value({"B": "2", "A": "1"}) == "A=1\nB=2\n"

    def test_empty_value_kept(self):
        assert to_key_value({"A": ""}) == "A=\n"

    def test_empty_mapping(self):
        assert to_key_value({}) == ""

    @pytest.mark.parametrize("value", ["/k\nDEBUG=True", "/k\rDEBUG=True", "a\n"])
    def test_line_break_in_value_rejected(self, value):
        with pytest.raises(ConfigurationError, match="SECRET_KEY_FILE"):
            to_key_value({"DEBUG": "False", "SECRET_KEY_FILE": value})


class TestLineInjection:
    def test_typed_values_cannot_add_lines(self):
        config = make_config(
            SECRET_KEY_FILE="/k\nDEBUG=True",
            ALLOWED_HOSTS=["a\nREGISTRATION_OPEN=True"],
        )
        with pytest.raises(ConfigurationError):
            build_environment_file(config, PACKAGE)

    def test_pythonpath_cannot_add_lines(self):
        package = PackagePaths(store_path="/nix/store/abc", python_path="/lib\nDEBUG=True")
        with pytest.raises(ConfigurationError, match="PYTHONPATH"):
            build_environment_file(make_config(), package)


class TestEnvironmentVariables:
    def test_synthesized_keys(self):
        env = environment_variables(make_config(data_dir="/srv/hc"), PACKAGE)
        assert env["PYTHONPATH"] == PACKAGE.python_path
        assert env["STATIC_ROOT"] == "/srv/hc/static"

    def test_allowed_hosts_comma_joined(self):
        lines = env_lines(make_config(ALLOWED_HOSTS=["a.example", "b.example"]))
        assert "ALLOWED_HOSTS=a.example,b.example" in lines

    def test_allowed_hosts_default(self):
        assert "ALLOWED_HOSTS=*" in env_lines(make_config())

    def test_booleans_use_python_literals(self):
        lines = env_lines(make_config(DEBUG=True, REGISTRATION_OPEN=False))
        assert "DEBUG=True" in lines
        assert "REGISTRATION_OPEN=False" in lines

    def test_sqlite_db_name_derived(self):
        lines = env_lines(make_config(data_dir="/srv/hc"))
        assert "DB=sqlite" in lines
        assert "DB_NAME=/srv/hc/healthchecks.sqlite" in lines

    def test_postgres_db_name_derived(self):
        assert "DB_NAME=hc" in env_lines(make_config(DB="postgres"))

    def test_secret_paths_only(self):
        lines = env_lines(
            make_config(
                SECRET_KEY_FILE="/run/secrets/key",
                EMAIL_HOST_PASSWORD_FILE="/run/secrets/smtp",
            )
        )
        assert "SECRET_KEY_FILE=/run/secrets/key" in lines
        assert "EMAIL_HOST_PASSWORD_FILE=/run/secrets/smtp" in lines

    def test_free_form_settings_passed_through(self):
        lines = env_lines(make_config(SITE_NAME="My Pings", EMAIL_USE_TLS="True"))
        assert "SITE_NAME=My Pings" in lines
        assert "EMAIL_USE_TLS=True" in lines

    def test_typed_settings_win_over_free_form(self):
        config = make_config(DEBUG=False, additional={"DEBUG": "True"})
        assert "DEBUG=False" in env_lines(config)

    def test_free_form_overrides_synthesized(self):
        config = make_config(additional={"STATIC_ROOT": "/srv/static"})
        assert "STATIC_ROOT=/srv/static" in env_lines(config)


class TestBuildEnvironmentFile:
    def test_path_in_environment_dir(self):
        env_file = build_environment_file(make_config(), PACKAGE)
        assert env_file.directory == "/etc/healthchecks"
        assert env_file.name.startswith(ENVIRONMENT_FILE_PREFIX)
        assert env_file.path == f"/etc/healthchecks/{env_file.name}"

    def test_identical_config_identical_file(self):
        first = build_environment_file(make_config(), PACKAGE)
        second = build_environment_file(make_config(), PACKAGE)
        assert first.content == second.content
        assert first.path == second.path

    def test_settings_change_changes_path(self):
        first = build_environment_file(make_config(DEBUG=False), PACKAGE)
        second = build_environment_file(make_config(DEBUG=True), PACKAGE)
        assert first.path != second.path

    def test_content_sorted(self):
        lines = env_lines(make_config(SITE_NAME="x"))
        keys = [line.split("=", 1)[0] for line in lines]
        assert keys == sorted(keys)
