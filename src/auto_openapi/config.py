"""Global validation defaults and project configuration.

Defaults come from, in order: explicit arguments, a YAML/JSON config file,
environment variables.

Environment:
    AUTO_OPENAPI_SKIP_VALIDATION   true / false / request / response
    AUTO_OPENAPI_DETAILED_ERRORS   true / false / request / response
    APP_ENV or ENV                 "development" turns detailed errors on
"""

import json
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from auto_openapi.operations.models import ValidationFlags

Side = Literal["request", "response"]

DEVELOPMENT_ENVS = {"development", "dev", "local"}
TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off", ""}


class RequestTargets(BaseModel):
    model_config = ConfigDict(frozen=True)

    headers: bool = False
    query: bool = False
    path_params: bool = False
    body: bool = False
    cookies: bool = False


class ResponseTargets(BaseModel):
    model_config = ConfigDict(frozen=True)

    headers: bool = False
    body: bool = False
    cookies: bool = False


class FlagDefaults(BaseModel):
    """One flag's global default: a bool per side, or a bool per target."""

    model_config = ConfigDict(frozen=True)

    request: bool | RequestTargets = False
    response: bool | ResponseTargets = False

    @classmethod
    def everywhere(cls, value: bool) -> "FlagDefaults":
        return cls(request=value, response=value)

    def value(self, side: Side, target: str) -> bool:
        setting = self.request if side == "request" else self.response
        if isinstance(setting, bool):
            return setting
        return bool(getattr(setting, target, False))


class ValidationDefaults(BaseModel):
    model_config = ConfigDict(frozen=True)

    skip_validation: FlagDefaults = FlagDefaults()
    detailed_error: FlagDefaults = FlagDefaults()

    def flags_for(self, side: Side, target: str) -> ValidationFlags:
        return ValidationFlags(
            skip=self.skip_validation.value(side, target),
            detailed_error=self.detailed_error.value(side, target),
        )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ValidationDefaults":
        environ = os.environ if environ is None else environ

        detailed = _flag_from_env(environ.get("AUTO_OPENAPI_DETAILED_ERRORS"))
        if detailed is None:
            env_name = environ.get("APP_ENV") or environ.get("ENV") or ""
            detailed = FlagDefaults.everywhere(env_name.lower() in DEVELOPMENT_ENVS)

        return cls(
            skip_validation=_flag_from_env(environ.get("AUTO_OPENAPI_SKIP_VALIDATION")) or FlagDefaults(),
            detailed_error=detailed,
        )

    @classmethod
    def from_file(cls, path: Path) -> "ValidationDefaults":
        return ProjectConfig.from_file(path).validation


def _flag_from_env(raw: str | None) -> FlagDefaults | None:
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in TRUTHY:
        return FlagDefaults.everywhere(True)
    if value in FALSY:
        return FlagDefaults.everywhere(False)
    if value == "request":
        return FlagDefaults(request=True, response=False)
    if value == "response":
        return FlagDefaults(request=False, response=True)
    raise ValueError(f"Invalid flag value {raw!r}; expected true, false, request or response")


def load_config_file(path: Path) -> dict:
    """Read a YAML or JSON config file into a dict."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        data = json.loads(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a mapping")
    return data


class ProjectConfig(BaseModel):
    """Settings for ``auto-openapi generate``.

    ``overrides`` maps a route (``/api/users/[id]``) to method fragments that
    are applied as operation overrides.
    """

    title: str = "API"
    version: str = "1.0.0"
    routes_root: Path | None = None
    overrides: dict[str, dict[str, dict]] = Field(default_factory=dict)
    validation: ValidationDefaults = ValidationDefaults()

    @classmethod
    def from_file(cls, path: Path) -> "ProjectConfig":
        return cls.model_validate(load_config_file(path))
