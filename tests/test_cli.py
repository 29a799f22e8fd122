"""
Installer and cleanup entry point tests
"""

import subprocess
from unittest import mock

import pytest
from botocore.exceptions import EndpointConnectionError, WaiterError

from tkg_bootstrap import install, uninstall
from tkg_bootstrap.install import InstallStage, Orchestrator, display_state_summary
from tkg_bootstrap.state import StateStore

from .conftest import FakeSession


def test_tag_mismatch_exits_before_any_aws_call(config, tmp_path):
    StateStore.open(config.state_dir, "other")

    with mock.patch.object(install, "load_install_config", return_value=config), \
            mock.patch.object(install, "get_aws_session") as session:
        with pytest.raises(SystemExit) as info:
            install.main(["--network-only"])

    assert info.value.code == 1
    session.assert_not_called()


def test_missing_installer_files_exit(config):
    with mock.patch.object(install, "load_install_config", return_value=config), \
            mock.patch.object(install, "get_aws_session") as session:
        with pytest.raises(SystemExit):
            install.main([])

    session.assert_not_called()
    assert not config.state_dir.exists()


def test_network_only_runs_network_and_jumpbox(config, ec2):
    with mock.patch.object(install, "load_install_config", return_value=config), \
            mock.patch.object(install, "get_aws_session", return_value=FakeSession(ec2=ec2)), \
            mock.patch.object(Orchestrator, "run") as run:
        install.main(["--network-only"])

    run.assert_called_once_with(network_only=True)


def test_stage_selection(ctx):
    orchestrator = Orchestrator(ctx)

    assert orchestrator.stages(network_only=True) == (InstallStage.NETWORK, InstallStage.JUMPBOX)
    assert orchestrator.stages()[-1] == InstallStage.INSTALLER


def test_status_summary_lists_records(store):
    store.write("vpc", {"Vpc": {"VpcId": "vpc-1"}})
    store.record_path("nat-gw").write_text("")

    with mock.patch.object(install.console, "print") as printed:
        display_state_summary(store)

    table = printed.call_args_list[0].args[0]
    assert table.row_count == 2


def test_cleanup_requires_matching_tag(store, ec2, monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    store.write("vpc", {"Vpc": {"VpcId": "vpc-1"}})
    prompt = mock.Mock(ask=mock.Mock(return_value="wrong"))

    with mock.patch.object(uninstall.questionary, "text", return_value=prompt), \
            mock.patch.object(uninstall, "get_aws_session") as session:
        uninstall.main(["--state-dir", str(store.state_dir)])

    session.assert_not_called()
    assert store.usable("vpc")


def test_cleanup_force_tears_down(store, ec2, monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    store.write("vpc", {"Vpc": {"VpcId": "vpc-1"}})

    with mock.patch.object(uninstall, "get_aws_session", return_value=FakeSession(ec2=ec2)):
        uninstall.main(["--state-dir", str(store.state_dir), "--force"])

    assert ec2.kwargs_of("delete_vpc") == [{"VpcId": "vpc-1"}]
    assert not store.usable("vpc")


def test_cleanup_missing_state_dir_exits(tmp_path, monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("AWS_REGION", "us-east-1")

    with pytest.raises(SystemExit) as info:
        uninstall.main(["--state-dir", str(tmp_path / "absent"), "--force"])
    assert info.value.code == 1


# ─── failures inside a run ───

def run_install(config, session, argv=("--network-only",)):
    with mock.patch.object(install, "load_install_config", return_value=config), \
            mock.patch.object(install, "get_aws_session", return_value=session):
        with pytest.raises(SystemExit) as info:
            install.main(list(argv))
    return info.value.code


def test_failed_jumpbox_copy_exits_with_error(config, ec2, capsys):
    failure = subprocess.CalledProcessError(1, ["scp", "install-tanzu-software.sh"])

    with mock.patch.object(Orchestrator, "run", side_effect=failure):
        assert run_install(config, FakeSession(ec2=ec2)) == 1

    err = capsys.readouterr().err
    assert "❌" in err
    assert "scp" in err


def test_nat_waiter_timeout_exits_with_error(config, ec2, capsys):
    waiter = mock.Mock()
    waiter.wait.side_effect = WaiterError(
        name="NatGatewayAvailable", reason="Max attempts exceeded", last_response={})
    ec2.get_waiter = mock.Mock(return_value=waiter)

    assert run_install(config, FakeSession(ec2=ec2)) == 1

    err = capsys.readouterr().err
    assert "❌" in err
    assert "NatGatewayAvailable" in err
    assert "create_transit_gateway" not in ec2.names()


def test_fatal_error_goes_to_stderr(config, capsys):
    StateStore.open(config.state_dir, "other")

    assert run_install(config, FakeSession()) == 1

    captured = capsys.readouterr()
    assert "ERROR:" in captured.err
    assert "ERROR:" not in captured.out


def test_status_with_different_tag_is_fatal(tmp_path, capsys):
    state_dir = tmp_path / "tkg-install-red"
    StateStore.open(state_dir, "red")

    with pytest.raises(SystemExit) as info:
        install.main(["--status", "--tag", "blue", "--state-dir", str(state_dir)])

    assert info.value.code == 1
    assert "'blue'" in capsys.readouterr().err


def test_status_with_matching_tag(tmp_path):
    state_dir = tmp_path / "tkg-install-red"
    StateStore.open(state_dir, "red").write("vpc", {"Vpc": {"VpcId": "vpc-1"}})

    with mock.patch.object(install, "display_state_summary") as summary:
        install.main(["--status", "--tag", "red", "--state-dir", str(state_dir)])

    assert summary.call_args.args[0].tag == "red"


def test_cleanup_connection_failure_exits(store, ec2, monkeypatch, capsys):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    store.write("vpc", {"Vpc": {"VpcId": "vpc-1"}})
    failure = EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com")

    with mock.patch.object(uninstall, "get_aws_session", return_value=FakeSession(ec2=ec2)), \
            mock.patch.object(uninstall.TeardownDriver, "run", side_effect=failure):
        with pytest.raises(SystemExit) as info:
            uninstall.main(["--state-dir", str(store.state_dir), "--force"])

    assert info.value.code == 1
    assert "❌" in capsys.readouterr().err
