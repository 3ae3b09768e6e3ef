"""
Quality gate configuration and execution.

Checks are shell commands run in the repository directory. The configuration
is a JSON document with default checks, per-repository overrides (optionally
inheriting the defaults) and global settings. It is loaded once and treated
as read-only afterwards.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from repo_coordinator.core.errors import QualityGateConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "data" / "quality-gates.json"


class QualityCheck(BaseModel):
    model_config = ConfigDict(extra="ignore")

    command: Optional[str] = None
    description: Optional[str] = None
    required: bool = True
    autofix: Optional[str] = None


class CheckSet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    checks: Dict[str, QualityCheck] = Field(default_factory=dict)


class RepositoryOverride(CheckSet):
    description: Optional[str] = None
    inherit: Optional[Union[bool, str]] = None


class GlobalSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    stop_on_first_failure: bool = Field(False, alias="stopOnFirstFailure")
    timeout: float = 300.0  # seconds per check


class QualityGateConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    default: Optional[CheckSet] = None
    repository_overrides: Dict[str, RepositoryOverride] = Field(
        default_factory=dict, alias="repositoryOverrides"
    )
    global_settings: GlobalSettings = Field(
        default_factory=GlobalSettings, alias="globalSettings"
    )


def builtin_config() -> QualityGateConfig:
    return QualityGateConfig(
        default=CheckSet(
            checks={
                "lint": QualityCheck(command="make lint"),
                "test": QualityCheck(command="make test"),
                "build": QualityCheck(command="make build"),
            }
        ),
        global_settings=GlobalSettings(timeout=300.0),
    )


@dataclass
class CheckResult:
    name: str
    success: bool
    output: str = ""
    error: Optional[str] = None
    duration: float = 0.0  # seconds


@dataclass
class QualityRunResult:
    success: bool
    results: List[CheckResult] = field(default_factory=list)

    @property
    def failed_checks(self) -> List[str]:
        return [r.name for r in self.results if not r.success]

    @property
    def passed_checks(self) -> List[str]:
        return [r.name for r in self.results if r.success]


class QualityGateValidator:
    """Loads the quality gate configuration and runs checks against a repository"""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Optional[QualityGateConfig] = None

    @property
    def config(self) -> QualityGateConfig:
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def load_config(self) -> QualityGateConfig:
        """
        Parse and validate the configuration file.

        Raises:
            QualityGateConfigError: malformed document or a check without a command
        """
        config = self._parse()
        errors = self._collect_errors(config)
        if errors:
            raise QualityGateConfigError("; ".join(errors))
        return config

    def validate_config(self) -> Dict[str, Any]:
        """Report problems without raising"""
        try:
            config = self._parse()
        except QualityGateConfigError as e:
            return {"valid": False, "errors": [str(e)], "warnings": []}

        errors = self._collect_errors(config)
        warnings = [
            f"Repository '{name}' has no quality checks defined"
            for name, override in config.repository_overrides.items()
            if not override.checks
        ]
        return {"valid": not errors, "errors": errors, "warnings": warnings}

    def get_quality_checks(self, repo_name: str) -> Dict[str, QualityCheck]:
        config = self.config
        defaults = dict(config.default.checks) if config.default else {}
        override = config.repository_overrides.get(repo_name)
        if override is None:
            return defaults

        checks = dict(defaults) if override.inherit == "default" else {}
        checks.update(override.checks)
        return checks

    def get_autofix_commands(self, repo_name: str) -> List[Dict[str, str]]:
        return [
            {
                "name": name,
                "command": check.autofix,
                "description": check.description or f"Auto-fix {name}",
            }
            for name, check in self.get_quality_checks(repo_name).items()
            if check.autofix
        ]

    def get_configured_repositories(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": name,
                "description": override.description or "No description available",
                "checks_count": len(self.get_quality_checks(name)),
            }
            for name, override in self.config.repository_overrides.items()
        ]

    async def run_quality_checks(
        self, repo_path: Union[str, Path], repo_name: Optional[str] = None
    ) -> QualityRunResult:
        """Run every required check; optional checks are skipped"""
        repo_path = Path(repo_path)
        repo_name = repo_name or repo_path.name
        settings = self.config.global_settings

        results: List[CheckResult] = []
        for name, check in self.get_quality_checks(repo_name).items():
            if not check.required:
                continue

            result = await self._run_command(name, check.command, repo_path, settings.timeout)
            results.append(result)
            if not result.success:
                logger.warning(f"Quality check '{name}' failed in {repo_name}")
                if settings.stop_on_first_failure:
                    break

        return QualityRunResult(success=all(r.success for r in results), results=results)

    async def run_autofix(
        self,
        repo_path: Union[str, Path],
        repo_name: Optional[str] = None,
        check_name: Optional[str] = None,
    ) -> QualityRunResult:
        repo_path = Path(repo_path)
        repo_name = repo_name or repo_path.name
        fixes = self.get_autofix_commands(repo_name)
        if check_name:
            fixes = [fix for fix in fixes if fix["name"] == check_name]

        timeout = self.config.global_settings.timeout
        results = [
            await self._run_command(fix["name"], fix["command"], repo_path, timeout)
            for fix in fixes
        ]
        return QualityRunResult(success=all(r.success for r in results), results=results)

    async def _run_command(
        self, name: str, command: str, cwd: Path, timeout: float
    ) -> CheckResult:
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return CheckResult(name, False, error=str(e), duration=time.monotonic() - start)

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return CheckResult(
                name,
                False,
                error=f"Check timed out after {timeout:.0f}s",
                duration=time.monotonic() - start,
            )

        output = stdout.decode(errors="replace")
        if proc.returncode == 0:
            return CheckResult(name, True, output=output, duration=time.monotonic() - start)
        return CheckResult(
            name,
            False,
            output=output,
            error=stderr.decode(errors="replace") or f"exit code {proc.returncode}",
            duration=time.monotonic() - start,
        )

    def _parse(self) -> QualityGateConfig:
        try:
            raw = self.config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning(
                f"Quality gates config not found at {self.config_path}, using defaults"
            )
            return builtin_config()

        try:
            return QualityGateConfig.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise QualityGateConfigError(
                f"Invalid quality gates config {self.config_path}: {e}"
            ) from e

    @staticmethod
    def _collect_errors(config: QualityGateConfig) -> List[str]:
        errors: List[str] = []
        if config.default is None:
            errors.append("Missing default.checks configuration")
        else:
            errors.extend(
                f"Quality check '{name}' in 'default' missing command"
                for name, check in config.default.checks.items()
                if not check.command
            )
        for repo_name, override in config.repository_overrides.items():
            errors.extend(
                f"Quality check '{name}' in '{repo_name}' missing command"
                for name, check in override.checks.items()
                if not check.command
            )
        return errors
