"""
Configuration
=============

Process-wide defaults, read once from the environment:

    NANOGRAD_DTYPE      element type of new tensors (float32 | float64)
    NANOGRAD_DEVICE     device tag of new tensors (cpu | cuda)
    NANOGRAD_LOG_LEVEL  level of the 'nanograd' logger
    NANOGRAD_SEED       seed of the generator behind rand() / uniform()

Example:
    >>> from nanograd.config import set_config
    >>> set_config(dtype='float32')
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional


ENV_PREFIX = 'NANOGRAD_'
LOGGER_NAME = 'nanograd'


@dataclass(frozen=True)
class Config:
    """
    Engine defaults.

    Attributes:
        dtype: Name of the default floating element type.
        device: Name of the default device tag.
        log_level: Level name for the package logger.
        seed: Seed for the default random generator, or None for entropy.
    """

    dtype: str = 'float64'
    device: str = 'cpu'
    log_level: str = 'WARNING'
    seed: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Config:
        """
        Build a Config from NANOGRAD_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ.

        Returns:
            A Config with every unset variable left at its default.

        Raises:
            ValueError: If NANOGRAD_SEED is not an integer.
        """
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == '':
                continue
            if f.name == 'seed':
                try:
                    values['seed'] = int(raw)
                except ValueError:
                    raise ValueError(f"{ENV_PREFIX}SEED must be an integer, got {raw!r}") from None
            elif f.name == 'log_level':
                values['log_level'] = raw.upper()
            else:
                values[f.name] = raw.lower()
        return cls(**values)


_config: Optional[Config] = None


def log_level_number(name: str) -> int:
    """Numeric level for a level name; unknown names fall back to WARNING."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.WARNING


def apply_log_level(config: Config) -> None:
    """Set the 'nanograd' logger to config.log_level."""
    logging.getLogger(LOGGER_NAME).setLevel(log_level_number(config.log_level))


def _validate(overrides: Dict[str, Any]) -> Dict[str, Any]:
    # element types and devices import this module, so resolve them lazily
    from .device import Device
    from .dtype import resolve_dtype

    values = dict(overrides)
    if 'dtype' in values:
        values['dtype'] = resolve_dtype(values['dtype']).name
    if 'device' in values:
        values['device'] = Device.parse(values['device']).value
    if 'log_level' in values:
        name = str(values['log_level']).upper()
        if not isinstance(logging.getLevelName(name), int):
            raise ValueError(f"Unknown log level {values['log_level']!r}")
        values['log_level'] = name
    if 'seed' in values and values['seed'] is not None:
        if isinstance(values['seed'], bool) or not isinstance(values['seed'], int):
            raise ValueError(f"seed must be an integer or None, got {values['seed']!r}")
    return values


def get_config() -> Config:
    """Return the active configuration, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def set_config(**overrides) -> Config:
    """
    Replace fields of the active configuration.

    Values are checked here rather than at the next tensor construction,
    and a new log_level takes effect on the 'nanograd' logger immediately.

    Example:
        >>> set_config(dtype='float32', log_level='debug').log_level
        'DEBUG'

    Raises:
        TypeError: If an override names an unknown field.
        NumericConversionError: If dtype is not a supported float type.
        ValueError: If device, log_level or seed is invalid.
    """
    global _config
    known = {f.name for f in fields(Config)}
    unknown = set(overrides) - known
    if unknown:
        raise TypeError(f"Unknown config field(s): {', '.join(sorted(unknown))}")
    values = _validate(overrides)
    _config = replace(get_config(), **values)
    if 'log_level' in values:
        apply_log_level(_config)
    return _config


def reset_config() -> None:
    """Forget overrides, re-read the environment and re-apply the log level."""
    global _config
    _config = None
    apply_log_level(get_config())
