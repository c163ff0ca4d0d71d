import yaml
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ValidationError, model_validator, ConfigDict

from . import constants
from .datacls import Artifact
from .exceptions import (
    ConfigParsingError,
    ConfigFileMissingError,
    ConfigValidationError,
)


logger = logging.getLogger(__name__)


class RunOptions(BaseModel):
    """
        Run-wide options consumed by the cache core.

        Built once per run (usually from CLI flags) and handed explicitly to
        the controller and the retention policy.
    """
    model_config = ConfigDict(frozen=True)

    cache_file: str = constants.DEFAULT_CACHE_FILE
    cache_artifacts: bool = True
    no_prune: bool = False
    force: bool = False
    command: str = "build"
    verify_remote: bool = False
    push: bool = False
    concurrency: int = Field(default=constants.DEFAULT_CONCURRENCY, ge=1)
    fail_fast: bool = False
    cleanup: bool = False
    tail: bool = False
    namespace: Optional[str] = None
    profiles: List[str] = Field(default_factory=list)
    custom_labels: List[str] = Field(default_factory=list)

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_file).expanduser()

    def prune(self) -> bool:
        """True iff neither --no-prune nor --cache-artifacts was requested."""
        return not self.no_prune and not self.cache_artifacts

    def force_deploy(self) -> bool:
        return self.command == constants.DEV_COMMAND or self.force

    def labels(self) -> Dict[str, str]:
        """Labels applied to everything produced during this run."""
        labels: Dict[str, str] = {}
        if self.cleanup:
            labels[f"{constants.LABEL_PREFIX}/cleanup"] = "true"
        if self.tail:
            labels[f"{constants.LABEL_PREFIX}/tail"] = "true"
        if self.namespace:
            labels[f"{constants.LABEL_PREFIX}/namespace"] = self.namespace
        if self.profiles:
            labels[f"{constants.LABEL_PREFIX}/profiles"] = "__".join(self.profiles)
        for custom in self.custom_labels:
            key, sep, value = custom.partition("=")
            labels[key] = value if sep else ""
        return labels


class ArtifactModel(BaseModel):
    """
        Class Config-Validation Model describe one entry of `artifacts`
    """
    image: str
    context: str = "."
    dockerfile: str = constants.DOCKERFILE_NAME
    build_args: Dict[str, str] = Field(default_factory=dict)
    target: Optional[str] = None
    # other builder-specific settings, we won't check
    model_config = ConfigDict(extra="allow")

    @model_validator(mode='after')
    def check_image_is_untagged(self) -> 'ArtifactModel':
        """Tags are generated per run, the image must be a bare repository"""
        last = self.image.rsplit("/", 1)[-1]
        if ":" in last or "@" in self.image:
            raise ValueError(f"Image '{self.image}' must not carry a tag or digest.")
        return self


class ConfigModel(BaseModel):
    """
        Class Config-Validation Model desribe top-level of the project file
    """
    name: str
    tag: str = constants.DEFAULT_TAG
    options: Dict[str, Any] = Field(default_factory=dict)
    artifacts: Dict[str, ArtifactModel]
    model_config = ConfigDict(extra="allow")

    @model_validator(mode='after')
    def check_artifacts_present(self) -> 'ConfigModel':
        if not self.artifacts:
            raise ValueError("At least one artifact must be defined under 'artifacts'.")
        return self

    @model_validator(mode='after')
    def check_option_keys(self) -> 'ConfigModel':
        unknown = set(self.options) - set(RunOptions.model_fields)
        if unknown:
            raise ValueError(f"Unknown option(s): {sorted(unknown)}, must be among {sorted(RunOptions.model_fields)}.")
        return self


class Config:
    """
    Loads and validates the project file using Pydantic models.
    It is the sole gatekeeper for configuration.
    """
    def __init__(self, config_path: str):
        self.path = Path(config_path)
        logger.info(f"Loading configuration from '{self.path}'...")
        raw_data = self._load_raw_config()

        try:
            self.model = ConfigModel.model_validate(raw_data)
            logger.debug(f"Configuration model validated successfully: \n{self.model.model_dump_json(indent=2)}")
        except ValidationError as e:
            raise ConfigValidationError(f"Configuration validation failed:\n{e}") from e

    def _load_raw_config(self) -> Dict[str, Any]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConfigFileMissingError(f"Configuration file not found at: {self.path}") from e
        try:
            config_data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigParsingError(f"Error parsing YAML file: {e}") from e
        if not isinstance(config_data, dict):
            raise ConfigParsingError("Configuration file must be a YAML document containing a dictionary.")
        logger.debug(f"Successfully parsed YAML from '{self.path}'.")
        return config_data

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def base_dir(self) -> Path:
        return self.path.resolve().parent

    def artifacts(self) -> List[Artifact]:
        """Artifacts in declaration order, contexts resolved against the project file."""
        result = []
        for name, model in self.model.artifacts.items():
            data = model.model_dump()
            data["context"] = str((self.base_dir / model.context).resolve())
            result.append(Artifact(name=name, **data))
        return result

    def tags(self) -> Dict[str, str]:
        return {name: f"{model.image}:{self.model.tag}" for name, model in self.model.artifacts.items()}

    def run_options(self, **overrides: Any) -> RunOptions:
        """Merge the file's `options` block with explicit overrides (None means unset)."""
        data = dict(self.model.options)
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return RunOptions.model_validate(data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid run options:\n{e}") from e
