# src/config/settings.py
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from monitor.settings import MonitorSettings
from notifications.settings import NotificationSettings
from risk.settings import RiskSettings


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class SystemConfig(BaseModel):
    name: str = "Trade Guard"
    version: str = "1.0.0"
    mode: str = "live"


class BackendSettings(BaseModel):
    """Execution backend used for position reads."""

    base_url: str = ""
    positions_path: str = "/positions"
    api_key: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)


class Settings(BaseSettings):
    """Top-level settings.

    Sources, lowest precedence first: field defaults, the YAML file, environment
    variables (``TRADEGUARD_`` prefix, ``__`` for nesting), then keyword
    arguments passed at construction.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRADEGUARD_",
        env_nested_delimiter="__",
        yaml_file=DEFAULT_CONFIG_PATH,
        extra="ignore",
    )

    system: SystemConfig = Field(default_factory=SystemConfig)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def from_yaml(cls, path: Path, **overrides) -> "Settings":
        """Load settings from a YAML file with env var and keyword overrides.

        A missing file is treated as empty, leaving defaults and environment.
        """
        layered = type(
            cls.__name__,
            (cls,),
            {
                "__module__": cls.__module__,
                "model_config": SettingsConfigDict(yaml_file=Path(path)),
            },
        )
        return layered(**overrides)
