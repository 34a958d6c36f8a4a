"""Bridge configuration models and loading.

The host pipeline owns parameter parsing; this module only describes the
slice of it the bridge consumes (which call sites have a plugin, where its
source lives, how many workers a plugin may use) and validates it.

## Feature Flag

Re-executing the plugin source on every invocation (legacy behavior) can be
forced via environment variable:

    export PYPLUGIN_RELOAD_EACH_CALL=1
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from shared.error_codes import ErrorCode
from shared.exceptions import ValidationError

RELOAD_FLAG = "PYPLUGIN_RELOAD_EACH_CALL"

DEFAULT_INIT_ENTRY = "forcepy_init"
DEFAULT_APPLY_ENTRY = "forcepy_"
DEFAULT_PIXEL_ENTRY = "forcepy"

SITES: tuple[str, ...] = ("tsa", "plg")


class PluginSiteConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = False
    file: Path | None = None

    init_entry: str = DEFAULT_INIT_ENTRY
    apply_entry: str = DEFAULT_APPLY_ENTRY
    pixel_entry: str = DEFAULT_PIXEL_ENTRY

    @model_validator(mode="after")
    def _require_file(self) -> "PluginSiteConfig":
        if self.enabled and self.file is None:
            raise ValueError("an enabled plugin site needs a source file")
        for name in (self.init_entry, self.apply_entry, self.pixel_entry):
            if not name.isidentifier():
                raise ValueError(f"entry point name {name!r} is not an identifier")
        return self


class BridgeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    tsa: PluginSiteConfig = Field(default_factory=PluginSiteConfig)
    plg: PluginSiteConfig = Field(default_factory=PluginSiteConfig)

    # Worker count handed to plugins as ``nproc``. Size jointly with the
    # host's own block threads.
    cthread: int = Field(default=1, ge=1)
    # "process" forks the host. A host running several block threads
    # should pick "thread"; forking a multi-threaded process is logged.
    pool_backend: Literal["process", "thread"] = "process"

    reload_each_call: bool = False
    self_test: bool = False
    fatal_exit: bool = True

    @property
    def any_enabled(self) -> bool:
        return self.tsa.enabled or self.plg.enabled

    def site(self, name: str) -> PluginSiteConfig:
        if name not in SITES:
            raise ValidationError(
                f"Unknown plugin site {name!r}",
                field="site",
                error_code=ErrorCode.INVALID_ARGUMENT,
                allowed=list(SITES),
            )
        site: PluginSiteConfig = getattr(self, name)
        return site

    def enabled_sites(self) -> list[str]:
        return [name for name in SITES if self.site(name).enabled]


def _reload_flag_enabled() -> bool:
    flag = os.environ.get(RELOAD_FLAG, "0")
    return flag.lower() in ("1", "true", "yes", "on")


def build_config(data: Mapping[str, Any]) -> BridgeConfig:
    """Validate a config mapping.

    Raises:
        ValidationError: If the mapping does not describe a valid config.
    """
    payload = dict(data)
    if _reload_flag_enabled():
        payload["reload_each_call"] = True
    try:
        return BridgeConfig.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"Invalid plugin bridge config: {first.get('msg')}",
            field=field or None,
            error_code=ErrorCode.INVALID_ARGUMENT,
            errors=len(exc.errors()),
        ) from exc


def load_config(path: str | Path) -> BridgeConfig:
    """Load config from a JSON file.

    Relative plugin source paths are resolved against the config file's
    directory.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    for name in SITES:
        site = data.get(name)
        if isinstance(site, dict) and site.get("file"):
            source = Path(site["file"])
            if not source.is_absolute():
                site["file"] = str(config_path.parent / source)

    return build_config(data)
