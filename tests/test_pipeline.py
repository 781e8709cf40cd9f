import shlex
from pathlib import Path

import pytest

from nativeci import invoker
from nativeci.dsl import linux, matrix, quarantine, wf, windows
from nativeci.errors import InvalidJobConfiguration, PipelineDefinitionError
from nativeci.model import AgentClass, Lane
from nativeci.pipeline import check_job, check_table, expand_lanes, render_command, to_buildkite_steps
from nativeci.workflow import load_workflow

WORKFLOW = Path(__file__).resolve().parents[1] / "nativeci_workflow.py"


def test_quarantine_declaration_expands_into_gating_and_quarantine_lanes():
    declared = linux("sup", features="ignore_integration_tests", flaky=quarantine(retries=10))

    gating, quarantined = expand_lanes([declared])

    assert gating.lane is Lane.GATING
    assert gating.retries == 1
    assert gating.invocation.features == "ignore_inconsistent_tests ignore_integration_tests"
    assert gating.label == "[unit] :linux: sup"

    assert quarantined.lane is Lane.QUARANTINE
    assert quarantined.retries == 10
    assert quarantined.invocation.features == "ignore_integration_tests"
    assert quarantined.label == "[unit][inconsistent] :linux: sup"
    assert not quarantined.gating

    assert gating.quarantine is None and quarantined.quarantine is None


def test_jobs_without_quarantine_pass_through():
    jobs = [linux("common"), windows("hab", timeout_minutes=20)]

    assert expand_lanes(jobs) == jobs


def test_explicit_label_is_kept_and_tagged_on_the_quarantine_lane():
    declared = windows("butterfly", label="butterfly on windows", flaky=quarantine())

    labels = [j.label for j in expand_lanes([declared])]

    assert labels == ["butterfly on windows", "butterfly on windows [inconsistent]"]


@pytest.mark.parametrize(
    "job, problem",
    [
        (linux("common", retries=-1), "retry budget"),
        (linux("common", timeout_minutes=0), "timeout"),
        (linux("common", skip=""), "reason"),
        (windows("hab", image="chefes/buildkite"), "container image"),
        (linux("sup", retries=10, flaky=quarantine(retries=5)), "must exceed"),
    ],
)
def test_check_job_rejects_inconsistent_jobs(job, problem):
    with pytest.raises(InvalidJobConfiguration) as exc:
        check_job(job)
    assert problem in str(exc.value)


def test_bad_quarantine_declaration_rejects_the_table():
    jobs = [linux("common"), linux("sup", features="ignore_inconsistent_tests", flaky=quarantine())]

    with pytest.raises(PipelineDefinitionError) as exc:
        check_table(jobs)

    assert "ignore_inconsistent_tests" in str(exc.value)


def test_duplicate_labels_reject_the_table():
    with pytest.raises(PipelineDefinitionError) as exc:
        check_table([linux("common"), linux("common")])

    assert exc.value.problems == ["duplicate job label: [unit] :linux: common"]


def test_other_job_problems_are_left_to_the_job():
    jobs = check_table([linux("common", retries=-1), linux("hab")])

    assert [j.component for j in jobs] == ["common", "hab"]


def test_matrix_and_wf_flatten_in_order():
    jobs = wf(
        matrix("component", ["common", "hab"]).jobs(lambda c: linux(c)),
        windows("sup"),
    )

    assert [(j.component, j.agent_class) for j in jobs] == [
        ("common", AgentClass.LINUX_CONTAINER),
        ("hab", AgentClass.LINUX_CONTAINER),
        ("sup", AgentClass.WINDOWS_NATIVE),
    ]


def test_pipeline_steps():
    jobs = check_table([
        linux("sup", features="ignore_integration_tests", flaky=quarantine()),
        windows("hab", timeout_minutes=20),
        windows("pkg-export-helm", skip="Linux only"),
    ])

    steps = to_buildkite_steps(jobs)

    assert steps[0] == {
        "label": "[unit] :linux: sup",
        "command": ["nativeci test --features 'ignore_inconsistent_tests ignore_integration_tests' sup"],
        "agents": {"queue": "docker-privileged"},
        "plugins": [{"docker#v2.1.0": {"image": "chefes/buildkite"}}],
        "timeout_in_minutes": 10,
        "retry": {"automatic": {"limit": 1}},
    }
    assert steps[1]["label"] == "[unit][inconsistent] :linux: sup"
    assert steps[1]["soft_fail"] is True
    assert steps[1]["retry"] == {"automatic": {"limit": 10}}
    assert steps[2]["agents"] == {"queue": "windows-default"}
    assert "plugins" not in steps[2]
    assert steps[2]["timeout_in_minutes"] == 20
    assert steps[3]["skip"] == "Linux only"


@pytest.mark.parametrize(
    "features, test_options",
    [
        (None, None),
        ("ignore_inconsistent_tests", None),
        (None, "--test-threads=1"),
        ("ignore_inconsistent_tests ignore_integration_tests", "--test-threads=1 --skip slow"),
    ],
)
def test_linux_and_windows_render_the_same_invocation(features, test_options):
    lj = linux("butterfly", features=features, test_options=test_options)
    wj = windows("butterfly", features=features, test_options=test_options)

    assert shlex.split(render_command(lj)) == shlex.split(render_command(wj))
    assert invoker.runner_argv(lj.invocation) == invoker.runner_argv(wj.invocation)


def test_shipped_workflow_is_valid():
    wf_ = load_workflow(WORKFLOW)

    jobs = check_table(wf_.jobs, source=wf_.source)
    by_label = {j.label: j for j in jobs}

    for j in jobs:
        check_job(j)
    assert by_label["[unit] :linux: sup"].invocation.features == (
        "ignore_inconsistent_tests ignore_integration_tests"
    )
    assert by_label["[unit][inconsistent] :linux: sup"].retries == 10
    assert by_label["[unit] :windows: butterfly"].invocation.test_options == "--test-threads=1"
    assert by_label["[unit][inconsistent] :windows: butterfly"].invocation.features == ""
    assert "[unit] :windows: pkg-export-helm" not in by_label
    assert "[unit] :linux: pkg-export-helm" in by_label


def test_step_timeout_is_rounded_up_to_whole_minutes():
    steps = to_buildkite_steps([linux("common", timeout_minutes=0.5), windows("hab", timeout_minutes=20)])

    assert [s["timeout_in_minutes"] for s in steps] == [1, 20]
    assert all(isinstance(s["timeout_in_minutes"], int) for s in steps)


def test_matrix_builder_must_return_jobs():
    with pytest.raises(TypeError) as exc:
        matrix("component", ["common"]).jobs(lambda c: c)

    assert "component='common'" in str(exc.value)
