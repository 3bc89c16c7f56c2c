from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .defaults import BASE_EXTERNALS, BUNDLED_PACKAGES, COMPILED_IMPORT_PREFIX, DEFAULT_COPIES


class PluginRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: str
    with_: dict[str, Any] = Field(default_factory=dict, alias="with")


class Bundle(BaseModel):
    model_config = ConfigDict(extra="forbid")

    package: str
    entry: str | None = None


class Copy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dest: str
    package: str | None = None
    path: str | None = None

    @model_validator(mode="after")
    def _validate_source(self) -> "Copy":
        if bool(self.package) == bool(self.path):
            raise ValueError("Copy entries need exactly one of package or path.")
        return self


class Retry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attempts: int = Field(default=3, ge=1)
    backoff_ms: int = Field(default=500, ge=0)


class Config(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str = "v1"
    source_root: str = "."
    dist_dir: str = "dist"
    compiled_dir: str = "compiled"
    build_version: str | None = None
    version_file: str = "package.json"
    transformer: PluginRef = Field(default_factory=lambda: PluginRef(type="passthrough"))
    bundler: PluginRef = Field(default_factory=lambda: PluginRef(type="copy"))
    externals: dict[str, str] = Field(default_factory=lambda: dict(BASE_EXTERNALS))
    compiled_import_prefix: str = COMPILED_IMPORT_PREFIX
    externals_policy: Literal["precomputed", "incremental"] = "precomputed"
    bundles: list[Bundle] = Field(
        default_factory=lambda: [Bundle(package=name) for name in BUNDLED_PACKAGES]
    )
    copies: list[Copy] = Field(default_factory=lambda: [Copy(**item) for item in DEFAULT_COPIES])
    manifest_roots: list[str] = Field(default_factory=list)
    retry: Retry = Field(default_factory=Retry)
    max_workers: int | None = Field(default=None, ge=1)
    notify: bool = True

    @model_validator(mode="after")
    def _validate_config(self) -> "Config":
        if self.version != "v1":
            raise ValueError("Only version v1 is supported.")
        seen: set[str] = set()
        duplicates: set[str] = set()
        for bundle in self.bundles:
            if bundle.package in seen:
                duplicates.add(bundle.package)
            seen.add(bundle.package)
        if duplicates:
            dup_list = ", ".join(sorted(duplicates))
            raise ValueError(f"Duplicate bundle packages: {dup_list}")
        return self
