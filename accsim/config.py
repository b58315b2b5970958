"""
accsim — Machine Configuration Profiles

A MachineConfig describes one simulated machine plus how a driver paces it.
Named profiles play the role of target profiles; a JSON file and keyword
overrides are layered on top of the chosen profile:

    cfg = load_config("lab.json", profile="full", trace=True)

JSON keys are the MachineConfig field names. Unknown keys are rejected.
"""

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional, Union

# Speed control range, in milliseconds per step
MIN_STEP_INTERVAL_MS = 100
MAX_STEP_INTERVAL_MS = 1500


class ConfigError(ValueError):
    """Raised on an invalid configuration value, key or profile."""


@dataclass(frozen=True)
class MachineConfig:
    memory_size: int = 64            # Cells in Memory
    load_address: int = 0            # Where programs are loaded / PC starts
    step_interval_ms: int = 600      # Period of the automatic run loop
    bus_clear_delay_ms: int = 300    # Deferred channel clear, 0 = immediate
    max_steps: int = 10_000          # Step budget for synchronous run()
    trace: bool = False              # Capture per-instruction trace
    description: str = ""

    def validate(self) -> 'MachineConfig':
        for name in ('memory_size', 'load_address', 'step_interval_ms',
                     'bus_clear_delay_ms', 'max_steps'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
        if not isinstance(self.trace, bool):
            raise ConfigError(f"trace must be true or false, got {self.trace!r}")
        if not isinstance(self.description, str):
            raise ConfigError(f"description must be a string, got {self.description!r}")
        if self.memory_size < 1:
            raise ConfigError(f"memory_size must be positive, got {self.memory_size!r}")
        if not MIN_STEP_INTERVAL_MS <= self.step_interval_ms <= MAX_STEP_INTERVAL_MS:
            raise ConfigError(
                f"step_interval_ms must be {MIN_STEP_INTERVAL_MS}-{MAX_STEP_INTERVAL_MS}, "
                f"got {self.step_interval_ms!r}")
        if self.bus_clear_delay_ms < 0:
            raise ConfigError(f"bus_clear_delay_ms must be >= 0, got {self.bus_clear_delay_ms!r}")
        if self.max_steps < 1:
            raise ConfigError(f"max_steps must be >= 1, got {self.max_steps!r}")
        return self

    def to_dict(self) -> dict:
        return asdict(self)


PROFILES = {
    "classroom": MachineConfig(
        description="64-cell demo machine, paced for watching the bus",
    ),
    "full": MachineConfig(
        memory_size=256,
        description="Every byte operand addresses a distinct cell",
    ),
    "headless": MachineConfig(
        step_interval_ms=MIN_STEP_INTERVAL_MS,
        bus_clear_delay_ms=0,
        description="No presentation delays; channel cleared immediately",
    ),
}


def load_config(path: Optional[Union[str, Path]] = None,
                profile: str = "classroom", **overrides) -> MachineConfig:
    """Build a validated config from a profile, an optional JSON file and overrides.

    Overrides whose value is None are ignored so CLI flags can be passed
    straight through.
    """
    if profile not in PROFILES:
        raise ConfigError(f"Unknown profile '{profile}' (choose from {', '.join(PROFILES)})")
    cfg = PROFILES[profile]
    known = {f.name for f in fields(MachineConfig)}

    if path is not None:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path}: invalid JSON ({e})") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{path}: top level must be an object")
        unknown = set(raw) - known
        if unknown:
            raise ConfigError(f"{path}: unknown key(s): {', '.join(sorted(unknown))}")
        cfg = replace(cfg, **raw)

    overrides = {k: v for k, v in overrides.items() if v is not None}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
    if overrides:
        cfg = replace(cfg, **overrides)

    return cfg.validate()
