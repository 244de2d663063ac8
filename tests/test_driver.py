import re

import pytest

from conftest import FakeVault
from dlprov.driver import Driver, Step
from dlprov.envfile import read_env_file
from dlprov.eventlog import SUCCESS_MARKER
from dlprov.lock import run_lock
from dlprov.models import GenerationConfig, VaultConfig

STACK = [
    "postgres",
    "rabbitmq",
    "elasticsearch",
    "datalens-api",
    "datalens-ui",
    "react-app-dev",
    "reverse-proxy",
]
LINE_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \| ")


def _generation(**overrides):
    base = dict(
        vm_name="datalensvm",
        admin_username="ubuntu-user",
        oauth_client_id="client-123",
        model_api_key="sk-test",
        model_name="gpt-4o",
        signing_secret="sig",
        blob_base_url="https://acct.blob.core.windows.net/images?sv=1",
        registry_username="datalens",
    )
    base.update(overrides)
    return GenerationConfig(**base)


def _log_lines(settings):
    with open(settings.log_path, encoding="utf-8") as f:
        return f.read().splitlines()


@pytest.fixture
def make_driver(settings, docker_client, runner, session):
    def factory(config, **kwargs):
        kwargs.setdefault("client", docker_client)
        kwargs.setdefault("runner", runner)
        kwargs.setdefault("session", session)
        kwargs.setdefault("install_packages", False)
        return Driver(config, settings, **kwargs)

    return factory


def test_full_run_generation_mode(make_driver, settings, docker_client, runner):
    driver = make_driver(_generation())
    assert driver.run() == 0
    assert driver.state is Step.DONE
    assert driver.history[-1] is Step.PROXY_RECONCILED

    started = [kwargs["name"] for _, kwargs in docker_client.containers.runs]
    assert started == STACK
    assert [n.name for n in docker_client.networks.list()] == ["datalens-network"]

    env = read_env_file(settings.env_path)
    assert env["MODEL_API_KEY"] == "sk-test"
    assert env["POSTGRES_PASSWORD"]

    assert runner.called("az", "login", "--identity")
    assert runner.called("az", "acr", "login", "--name", "datalens")
    assert runner.called("usermod", "-aG", "docker", "ubuntu-user")

    lines = _log_lines(settings)
    assert all(LINE_RE.match(line) for line in lines)
    assert lines[-1].endswith(SUCCESS_MARKER)


def test_rerun_converges_to_same_state(make_driver, settings, docker_client):
    assert make_driver(_generation()).run() == 0
    env_first = read_env_file(settings.env_path)
    net_first = [n.name for n in docker_client.networks.list()]

    assert make_driver(_generation()).run() == 0
    assert read_env_file(settings.env_path) == env_first
    assert [n.name for n in docker_client.networks.list()] == net_first
    for name in STACK:
        assert len(docker_client.containers.named(name)) == 1


def test_missing_model_api_key_fails_before_any_side_effect(make_driver, settings, docker_client, runner, session):
    driver = make_driver(_generation(model_api_key=""))
    assert driver.run() == 1
    assert driver.state is Step.FAILED

    assert docker_client.calls == 0
    assert runner.calls == []
    assert session.requested == []

    lines = _log_lines(settings)
    assert any("MissingRequiredSecret" in line and "[Init]" in line for line in lines)
    assert not any(SUCCESS_MARKER in line for line in lines)


def test_download_failure_aborts_before_services(make_driver, settings, docker_client, session):
    session.fail_midway.add("frontend-react-app-dev")
    driver = make_driver(_generation())
    assert driver.run() == 1

    assert docker_client.containers.runs == []
    assert docker_client.containers.named("reverse-proxy") == []
    assert Step.IMAGES_FETCHED not in driver.history

    lines = _log_lines(settings)
    failure = [line for line in lines if "FAILED" in line]
    assert failure and "[ImagesFetched]" in failure[0] and "(frontend-react-app-dev)" in failure[0]
    assert re.search(r"at \w+\.py:\d+", failure[0])
    assert not any(SUCCESS_MARKER in line for line in lines)


def test_vault_mode_substitutes_public_ip(make_driver, settings, docker_client):
    vault = FakeVault(
        {
            "postgres-user": "datalens",
            "postgres-password": "pw",
            "db-password": "please-change.me-later",
        }
    )
    config = VaultConfig(
        vault_name="datalensvm-kv",
        blob_base_url="https://acct.blob.core.windows.net/images",
        registry_username="datalens",
        registry_password="hunter2",
    )
    driver = make_driver(config, vault=vault, public_ip_lookup=lambda: "20.1.2.3")
    assert driver.run() == 0

    text = open(settings.env_path, encoding="utf-8").read()
    assert "DB_PASSWORD=please-20.1.2.3-later\n" in text
    assert "change.me" not in text
    assert docker_client.logins == [("datalens.azurecr.io", "datalens")]


def test_vault_empty_optional_secret_does_not_stop_the_run(make_driver, settings):
    vault = FakeVault({"postgres-user": "u", "postgres-password": "p", "onedrive-client-id": ""})
    config = VaultConfig(
        vault_name="kv",
        blob_base_url="https://acct.blob.core.windows.net/images",
        registry_username="datalens",
        registry_password="hunter2",
    )
    assert make_driver(config, vault=vault, public_ip_lookup=lambda: "20.1.2.3").run() == 0
    assert read_env_file(settings.env_path)["ONEDRIVE_CLIENT_ID"] == ""
    assert any("WARN" in line and "onedrive-client-id" in line for line in _log_lines(settings))


def test_vault_without_postgres_password_fails_at_materialization(make_driver, settings, docker_client):
    vault = FakeVault({"postgres-user": "datalens"})
    config = VaultConfig(
        vault_name="kv",
        blob_base_url="https://acct.blob.core.windows.net/images",
        registry_username="datalens",
        registry_password="hunter2",
    )
    driver = make_driver(config, vault=vault, public_ip_lookup=lambda: "20.1.2.3")
    assert driver.run() == 1
    assert Step.SECRETS_RESOLVED in driver.history
    assert Step.ENV_MATERIALIZED not in driver.history
    assert docker_client.containers.runs == []
    assert any("[EnvMaterialized]" in line and "POSTGRES_PASSWORD" in line for line in _log_lines(settings))


def test_docker_group_failure_is_only_a_warning(make_driver, settings, runner):
    runner.fail("usermod")
    assert make_driver(_generation()).run() == 0
    lines = _log_lines(settings)
    assert any("RecoverableWarning" in line for line in lines)
    assert lines[-1].endswith(SUCCESS_MARKER)


def test_service_start_failure_stops_pipeline(make_driver, settings, docker_client):
    docker_client.containers.busy_ports.add(8000)
    driver = make_driver(_generation())
    assert driver.run() == 1

    started = [kwargs["name"] for _, kwargs in docker_client.containers.runs]
    assert started == ["postgres", "rabbitmq", "elasticsearch"]
    assert any("ServiceStartError" in line and "(datalens-api)" in line for line in _log_lines(settings))


def test_concurrent_run_is_refused(make_driver, settings, docker_client):
    with run_lock(settings.lock_path):
        assert make_driver(_generation()).run() == 1
    assert docker_client.calls == 0
    assert any("RunLockError" in line for line in _log_lines(settings))
