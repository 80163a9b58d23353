"""Settings loaded from environment variables and an optional YAML file."""

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from imago.constants import CONFLICT_BACKOFF_SECONDS, CONFLICT_RETRIES, REGISTRY_TIMEOUT

DEFAULT_CONFIG_FILE = Path.home() / ".config" / "imago" / "config.yaml"


class Settings(BaseSettings):
    """imago settings.

    Precedence, highest first: IMAGO_* environment variables, then the YAML
    file at $IMAGO_CONFIG_FILE (default ~/.config/imago/config.yaml), then the
    defaults below. Command line flags override all of these.
    Example: IMAGO_REGISTRY_TIMEOUT=30
    """

    registry_timeout: float = REGISTRY_TIMEOUT
    conflict_retries: int = CONFLICT_RETRIES
    conflict_backoff_seconds: float = CONFLICT_BACKOFF_SECONDS
    docker_config: Optional[Path] = None
    kubeconfig: Optional[Path] = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="IMAGO_", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_file = Path(os.environ.get("IMAGO_CONFIG_FILE", DEFAULT_CONFIG_FILE))
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )
