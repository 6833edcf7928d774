"""Tests for the ecs-remote command line and the run() pipeline."""

import io
from unittest.mock import MagicMock

import pytest

from conftest import FakeEcsClient, StaticChooser, client_error, make_task
from ecs_remote import __version__
from ecs_remote.ecs_remote_cli import EXIT_INTERRUPTED, parse_args, run
from ecs_remote.exceptions import CredentialError, TransportPluginMissing
from ecs_remote.launcher import SessionLauncher
from ecs_remote.session import SessionDescriptor


class FakeContext:
    def __init__(self, client, profile_name="uat-admin"):
        self.ecs_client = client
        self.profile_name = profile_name
        self.verified = False

    def verify(self):
        self.verified = True

    def client(self, service_name):
        assert service_name == "ecs"
        return self.ecs_client


@pytest.fixture()
def launcher():
    launcher = MagicMock(spec=SessionLauncher)
    launcher.launch.return_value = 0
    return launcher


@pytest.fixture()
def client():
    return FakeEcsClient(clusters=["prod"], tasks=[make_task("prod", "0f3c9", containers=["app"])])


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])

        assert args.profile == "default"
        assert args.cluster is None
        assert args.container is None
        assert args.service is None
        assert args.command == "/bin/bash"

    def test_short_options(self):
        args = parse_args(["-p", "uat-admin", "-l", "uat", "-t", "app", "-s", "web", "-g", "eu-west-1"])

        assert (args.profile, args.cluster, args.container, args.service, args.region) == (
            "uat-admin",
            "uat",
            "app",
            "web",
            "eu-west-1",
        )

    def test_long_options(self):
        args = parse_args(["--profile", "prod", "--cluster", "prod", "--container", "app", "--command", "/bin/sh"])

        assert (args.profile, args.cluster, args.container, args.command) == ("prod", "prod", "app", "/bin/sh")

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            parse_args(["--version"])

        assert excinfo.value.code == 0
        assert capsys.readouterr().out.startswith(f"ecs-remote/{__version__}")

    def test_help(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            parse_args(["-h"])

        assert excinfo.value.code == 0
        assert "--container" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def test_session_started(client, launcher):
    context = FakeContext(client)

    exit_code = run(parse_args(["-l", "prod", "-t", "app"]), context=context, launcher=launcher)

    assert exit_code == 0
    assert context.verified
    launcher.verify.assert_called_once_with()
    (descriptor,), _ = launcher.launch.call_args
    assert isinstance(descriptor, SessionDescriptor)
    assert descriptor.ssm_target == "ecs:prod_0f3c9_0f3c9-0"
    assert descriptor.profile == "uat-admin"


def test_session_exit_status_is_ours(client, launcher):
    launcher.launch.return_value = 127

    assert run(parse_args([]), context=FakeContext(client), launcher=launcher) == 127


def test_rejected_session_never_launches(client, launcher):
    client.errors["execute_command"] = client_error("InvalidParameterException", "execute command was not enabled")

    exit_code = run(parse_args(["-l", "prod"]), context=FakeContext(client), launcher=launcher)

    assert exit_code == 20
    launcher.launch.assert_not_called()


def test_missing_plugin_fails_before_session_request(client, launcher):
    launcher.verify.side_effect = TransportPluginMissing("session-manager-plugin not installed")

    exit_code = run(parse_args(["-l", "prod"]), context=FakeContext(client), launcher=launcher)

    assert exit_code == 30
    assert client.calls_to("execute_command") == []
    launcher.launch.assert_not_called()


def test_ambiguous_cluster_without_terminal(launcher, caplog, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO())
    client = FakeEcsClient(clusters=["prod", "uat"])

    exit_code = run(parse_args([]), context=FakeContext(client), launcher=launcher)

    assert exit_code == 11
    assert "prod, uat" in caplog.text
    assert client.calls_to("execute_command") == []


def test_ambiguous_cluster_with_chooser(launcher):
    client = FakeEcsClient(clusters=["prod", "uat"], tasks=[make_task("uat", "abc")])
    chooser = StaticChooser(selection=1)

    exit_code = run(parse_args([]), context=FakeContext(client), chooser=chooser, launcher=launcher)

    assert exit_code == 0
    assert client.calls_to("execute_command")[0]["task"].endswith("/uat/abc")


def test_container_not_found(client, launcher):
    assert run(parse_args(["-t", "nginx"]), context=FakeContext(client), launcher=launcher) == 15


def test_credential_error(client, launcher):
    context = FakeContext(client)
    context.verify = MagicMock(side_effect=CredentialError("The config profile (nope) could not be found"))

    assert run(parse_args(["-p", "nope"]), context=context, launcher=launcher) == 40
    launcher.launch.assert_not_called()


def test_interrupted_while_resolving(client, launcher):
    client.errors["list_clusters"] = KeyboardInterrupt()

    assert run(parse_args([]), context=FakeContext(client), launcher=launcher) == EXIT_INTERRUPTED
    launcher.launch.assert_not_called()


def test_unexpected_api_error(client, launcher):
    client.errors["list_clusters"] = client_error("AccessDeniedException", "not authorized to perform: ecs:ListClusters")

    assert run(parse_args([]), context=FakeContext(client), launcher=launcher) == 1
