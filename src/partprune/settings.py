"""
Settings for partprune using pydantic-settings
"""

import json
import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Literal, Optional

from pydantic import Field, field_validator
from pydantic.aliases import AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import PartPruneError

LOCALCONFIG = "partprune_config.json"
GLOBALCONFIG = ".partprune_config.json"

logger = logging.getLogger(__name__.split(".")[0])


class PartPruneSettings(BaseSettings):
    """Main partprune settings using Pydantic"""

    # partition-aware planning; switched off automatically on broken partition metadata
    enable: bool = True
    # memoize partition bounds between rebuilds of the relation cache
    enable_bounds_cache: bool = True
    # scan the parent table too unless its params row says otherwise
    enable_parent_default: bool = False
    # name of the relation holding the partitioning configuration
    config_table: str = "partprune_config"

    loglevel: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias=AliasChoices("loglevel", "PARTPRUNE_LOG_LEVEL"),
    )

    model_config = SettingsConfigDict(
        env_prefix="PARTPRUNE_",
        case_sensitive=False,
        extra="ignore",
        validate_assignment=True,
    )

    @field_validator("loglevel", mode="before")
    @classmethod
    def validate_loglevel(cls, v: Any) -> str:
        """Validate and set logging level"""
        v = str(v).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"'{v}' is not a valid logging value {tuple(valid_levels)}")
        logger.setLevel(v)
        return v

    @field_validator("config_table")
    @classmethod
    def validate_config_table(cls, v: str) -> str:
        if not v or not v.replace("_", "").isalnum():
            raise ValueError(f"'{v}' is not a valid relation name")
        return v

    def save(self, filename: str, verbose: bool = False) -> None:
        """
        Saves the settings in JSON format to the given file path.

        :param filename: filename of the local JSON settings file.
        :param verbose: report having saved the settings file
        """
        with open(filename, "w") as fid:
            json.dump(self.model_dump(), fid, indent=4)
        if verbose:
            logger.info("Saved settings in " + filename)

    def load(self, filename: Optional[str] = None) -> None:
        """
        Updates the settings from a config file in JSON format.

        :param filename: filename of the local JSON settings file.
        """
        if filename is None:
            filename = LOCALCONFIG

        with open(filename, "r") as fid:
            logger.info(f"partprune is configured from {os.path.abspath(filename)}")
            data = json.load(fid)

        for key, value in data.items():
            if key not in self.__class__.model_fields:
                logger.warning(f"Ignoring unknown config key '{key}'")
                continue
            setattr(self, key, value)

    @contextmanager
    def override(self, **kwargs: Any) -> Iterator["PartPruneSettings"]:
        """
        Change settings temporarily within a with block.

        Example:
        >>> from partprune import config
        >>> with config.override(enable_bounds_cache=False) as cfg:
        >>>     # every bound lookup is recomputed here
        """
        unknown = [k for k in kwargs if k not in self.__class__.model_fields]
        if unknown:
            raise PartPruneError(f"Unknown settings {unknown}")
        backup_values: Dict[str, Any] = {key: getattr(self, key) for key in kwargs}
        try:
            for key, value in kwargs.items():
                setattr(self, key, value)
            yield self
        finally:
            for key, value in backup_values.items():
                setattr(self, key, value)


def disable_pruning(settings: PartPruneSettings) -> None:
    """Turn partition-aware planning off after broken partition metadata was found."""
    if settings.enable:
        logger.warning("partition pruning has been disabled because of a configuration error")
    settings.enable = False


def _create_config() -> PartPruneSettings:
    """Create a settings object with values from the environment and the first config file found."""
    settings = PartPruneSettings()
    config_files = (os.path.expanduser(n) for n in (LOCALCONFIG, os.path.join("~", GLOBALCONFIG)))
    try:
        settings.load(next(n for n in config_files if os.path.exists(n)))
    except StopIteration:
        logger.debug("No config file was found.")
    return settings


config = _create_config()
