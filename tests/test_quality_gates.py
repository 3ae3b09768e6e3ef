import json
import sys

import pytest

from repo_coordinator.core.errors import QualityGateConfigError
from repo_coordinator.multirepo import QualityGateValidator
from repo_coordinator.multirepo.quality_gates import DEFAULT_CONFIG_PATH

PY = sys.executable


def write_config(tmp_path, document):
    path = tmp_path / "quality-gates.json"
    path.write_text(json.dumps(document))
    return path


def basic_config(**global_settings):
    return {
        "default": {
            "checks": {
                "lint": {"command": f'{PY} -c "print(\'lint ok\')"', "autofix": "echo fix-lint"},
                "test": {"command": f'{PY} -c "import sys; sys.exit(3)"'},
                "docs": {"command": "echo docs", "required": False},
            }
        },
        "repositoryOverrides": {
            "svc": {
                "description": "Service",
                "inherit": "default",
                "checks": {"build": {"command": f'{PY} -c "print(\'built\')"'}},
            },
            "standalone": {"checks": {"build": {"command": "echo built"}}},
            "empty": {"description": "Nothing yet"},
        },
        "globalSettings": {"timeout": 30, **global_settings},
    }


def test_packaged_config_is_valid():
    validator = QualityGateValidator(DEFAULT_CONFIG_PATH)
    report = validator.validate_config()
    assert report["valid"] is True
    assert "loqa-hub" in [r["name"] for r in validator.get_configured_repositories()]


def test_missing_file_falls_back_to_builtin(tmp_path):
    validator = QualityGateValidator(tmp_path / "absent.json")
    assert set(validator.get_quality_checks("anything")) == {"lint", "test", "build"}


def test_check_without_command_is_a_configuration_error(tmp_path):
    path = write_config(tmp_path, {"default": {"checks": {"lint": {"description": "no cmd"}}}})
    validator = QualityGateValidator(path)

    with pytest.raises(QualityGateConfigError):
        validator.load_config()
    report = validator.validate_config()
    assert report["valid"] is False
    assert "missing command" in report["errors"][0]


def test_malformed_json_is_a_configuration_error(tmp_path):
    path = tmp_path / "quality-gates.json"
    path.write_text("{not json")
    with pytest.raises(QualityGateConfigError):
        QualityGateValidator(path).load_config()


def test_overrides_inherit_defaults(tmp_path):
    validator = QualityGateValidator(write_config(tmp_path, basic_config()))

    assert list(validator.get_quality_checks("svc")) == ["lint", "test", "docs", "build"]
    assert list(validator.get_quality_checks("standalone")) == ["build"]
    assert list(validator.get_quality_checks("unlisted")) == ["lint", "test", "docs"]
    assert validator.get_autofix_commands("svc") == [
        {"name": "lint", "command": "echo fix-lint", "description": "Auto-fix lint"}
    ]
    assert validator.validate_config()["warnings"] == [
        "Repository 'empty' has no quality checks defined"
    ]


@pytest.mark.asyncio
async def test_run_quality_checks_reports_each_check(tmp_path):
    validator = QualityGateValidator(write_config(tmp_path, basic_config()))

    run = await validator.run_quality_checks(tmp_path, "svc")

    assert run.success is False
    assert run.passed_checks == ["lint", "build"]
    assert run.failed_checks == ["test"]
    assert "lint ok" in run.results[0].output


@pytest.mark.asyncio
async def test_stop_on_first_failure(tmp_path):
    validator = QualityGateValidator(
        write_config(tmp_path, basic_config(stopOnFirstFailure=True))
    )
    run = await validator.run_quality_checks(tmp_path, "svc")
    assert [r.name for r in run.results] == ["lint", "test"]


@pytest.mark.asyncio
async def test_failing_check_runs_once_despite_legacy_retries(tmp_path):
    counter = tmp_path / "runs.txt"
    config = {
        "default": {
            "checks": {"flaky": {"command": f"echo run >> {counter}; exit 1"}},
        },
        "globalSettings": {"parallel": True, "retries": 3, "timeout": 30},
    }
    validator = QualityGateValidator(write_config(tmp_path, config))

    run = await validator.run_quality_checks(tmp_path)

    assert run.failed_checks == ["flaky"]
    assert counter.read_text().splitlines() == ["run"]
    assert validator.config.global_settings.model_dump() == {
        "stop_on_first_failure": False,
        "timeout": 30.0,
    }


@pytest.mark.asyncio
async def test_slow_check_times_out(tmp_path):
    config = {
        "default": {"checks": {"slow": {"command": f'exec {PY} -c "import time; time.sleep(5)"'}}},
        "globalSettings": {"timeout": 0.2},
    }
    validator = QualityGateValidator(write_config(tmp_path, config))

    run = await validator.run_quality_checks(tmp_path)
    assert run.failed_checks == ["slow"]
    assert "timed out" in run.results[0].error


@pytest.mark.asyncio
async def test_run_autofix_for_one_check(tmp_path):
    validator = QualityGateValidator(write_config(tmp_path, basic_config()))
    run = await validator.run_autofix(tmp_path, "svc", check_name="lint")
    assert run.success is True
    assert run.results[0].output.strip() == "fix-lint"
