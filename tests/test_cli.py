import json

import pytest
from click.testing import CliRunner

from nativeci import cli as cli_module
from nativeci.cli import cli

WORKFLOW = """
from nativeci import dep, flag, linux, quarantine, root_of, wf, windows

DEPENDENCIES = [
    dep("core/openssl", "static-link", "tool-path"),
    dep("core/zeromq", "dynamic-runtime"),
]
ENVIRONMENT = [
    *__import__("nativeci.env", fromlist=["DEFAULT_RULES"]).DEFAULT_RULES,
    root_of("OPENSSL_DIR", "core/openssl"),
    flag("OPENSSL_STATIC", "core/openssl", "static-link"),
]


def workflow():
    return wf(
        linux("common"),
        linux("sup", features="ignore_integration_tests", flaky=quarantine(retries=3)),
        windows("common", test_options="--test-threads=1"),
    )
"""

ROOTS = ["--root", "core/openssl=/pkgs/openssl", "--root", "core/zeromq=/pkgs/zeromq"]


@pytest.fixture
def project(tmp_path):
    (tmp_path / "nativeci_workflow.py").write_text(WORKFLOW, encoding="utf-8")
    for name in ("common", "sup"):
        (tmp_path / "components" / name).mkdir(parents=True)
    return tmp_path


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def fake_run_process(argv, *, cwd, env, timeout, capture):
        recorded.append({"argv": list(argv), "cwd": cwd, "env": dict(env)})
        return (3 if cwd.name == "sup" and "--features" not in argv else 0), ""

    monkeypatch.setattr(cli_module, "run_process", fake_run_process)
    return recorded


def _invoke(*args, env=None):
    return CliRunner(env=env).invoke(cli, list(args))


def test_test_command_runs_component_with_assembled_environment(project, calls):
    result = _invoke(
        "test", "--no-install", *ROOTS, "--repo-root", str(project),
        "--features", "ignore_inconsistent_tests ignore_integration_tests", "sup",
    )

    assert result.exit_code == 0, result.output
    assert calls[0]["argv"] == [
        "cargo", "test", "--features", "ignore_inconsistent_tests ignore_integration_tests", "--", "--nocapture",
    ]
    assert calls[0]["cwd"] == project / "components" / "sup"
    assert calls[0]["env"]["LIBRARY_PATH"] == "/pkgs/openssl/lib"
    assert calls[0]["env"]["LD_LIBRARY_PATH"] == "/pkgs/zeromq/lib"
    assert calls[0]["env"]["OPENSSL_STATIC"] == "true"


def test_test_command_without_features_has_no_feature_flag(project, calls):
    result = _invoke("test", "--no-install", *ROOTS, "--repo-root", str(project), "-t", "--test-threads=1", "common")

    assert result.exit_code == 0, result.output
    assert calls[0]["argv"] == ["cargo", "test", "--", "--nocapture", "--test-threads=1"]


def test_test_command_exits_with_test_status(project, calls):
    result = _invoke("test", "--no-install", *ROOTS, "--repo-root", str(project), "sup")

    assert result.exit_code == 3


@pytest.mark.parametrize(
    "args",
    [
        ["test"],
        ["test", "--bogus", "sup"],
        ["test", "--features"],
    ],
)
def test_test_command_usage_errors(project, calls, args):
    result = _invoke(*args)

    assert result.exit_code != 0
    assert calls == []


def test_missing_dependency_aborts_before_running(project, calls):
    result = _invoke(
        "test", "--no-install", "--root", "core/openssl=/pkgs/openssl", "--repo-root", str(project), "common",
        env={"NATIVECI_HAB_BINARY": "definitely-not-hab"},
    )

    assert result.exit_code == 1
    assert calls == []


def test_bad_root_override_is_a_usage_error(project, calls):
    result = _invoke("test", "--no-install", "--root", "core/openssl", "--repo-root", str(project), "common")

    assert result.exit_code == 2
    assert calls == []


def test_env_command_prints_exports(project):
    result = _invoke("env", *ROOTS, "--repo-root", str(project), "--platform", "linux")

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert "export LIBRARY_PATH=/pkgs/openssl/lib" in lines
    assert "export OPENSSL_DIR=/pkgs/openssl" in lines


def test_pipeline_command_emits_steps(project):
    result = _invoke("pipeline", "--repo-root", str(project))

    assert result.exit_code == 0, result.output
    steps = json.loads(result.output)["steps"]
    assert [s["label"] for s in steps] == [
        "[unit] :linux: common",
        "[unit] :linux: sup",
        "[unit][inconsistent] :linux: sup",
        "[unit] :windows: common",
    ]
    assert steps[2]["soft_fail"] is True
    assert steps[3]["command"] == ["nativeci test --test-options --test-threads=1 common"]


def test_pipeline_command_emits_records(project):
    result = _invoke("pipeline", "--repo-root", str(project), "--format", "records")

    assert result.exit_code == 0, result.output
    records = json.loads(result.output)
    assert [j["component"] for j in records["jobs"]] == ["common", "sup", "common"]
    assert records["jobs"][1]["quarantine"] == {"exclude_feature": "ignore_inconsistent_tests", "retries": 3}


def test_run_command_quarantine_failure_is_informational(project, monkeypatch):
    seen = []

    def fake(argv, *, cwd, env, timeout, capture):
        seen.append((cwd.name, list(argv)))
        flaky_lane = cwd.name == "sup" and "ignore_inconsistent_tests" not in " ".join(argv)
        return (1 if flaky_lane else 0), ""

    monkeypatch.setattr("nativeci.runner.run_process", fake)

    result = _invoke("run", "--no-install", *ROOTS, "--repo-root", str(project), "--agent", "linux-container")

    assert result.exit_code == 0, result.output
    assert "PIPELINE: PASSED" in result.output
    assert len([s for s in seen if s[0] == "sup"]) == 1 + 4


def test_run_command_gating_failure_exits_nonzero(project, monkeypatch):
    def fake(argv, *, cwd, env, timeout, capture):
        return (1 if cwd.name == "common" else 0), ""

    monkeypatch.setattr("nativeci.runner.run_process", fake)

    result = _invoke("run", "--no-install", *ROOTS, "--repo-root", str(project), "--agent", "linux-container")

    assert result.exit_code == 1
    assert "PIPELINE: FAILED" in result.output
