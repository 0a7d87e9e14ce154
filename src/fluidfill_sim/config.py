"""Configuration management for the simulator."""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv


@dataclass
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""
    client_id: str = "fluidfill-simulator"
    qos: int = 1


@dataclass
class TopicConfig:
    """Topic hierarchy for republished machine values."""

    plant: str = "DortmundBeverageCenter"
    line: str = "JuiceFillingLine3"
    machine: str = "FluidFillExpress2"
    retain: bool = True

    @property
    def base_topic(self) -> str:
        return f"{self.plant}/{self.line}/{self.machine}"


@dataclass
class SimulationConfig:
    """Simulation timing parameters (seconds)."""

    tick_interval_s: float = 2.0
    time_acceleration: float = 1.0
    random_seed: Optional[int] = None
    start_delay_s: float = 3.0
    stop_delay_s: float = 3.0
    changeover_delay_s: float = 5.0
    auto_start_delay_s: Optional[float] = 5.0
    cancel_on_supersede: bool = True


@dataclass
class ProductionConfig:
    """Bottle production and actuals perturbation."""

    bad_probability: float = 0.005
    volume_threshold: float = 0.4
    weight_threshold: float = 0.7
    cap_threshold: float = 0.9
    station_count: int = 16
    tank_depletion_pct: float = 0.001
    tank_refill_below_pct: float = 10.0
    tank_refill_to_pct: float = 95.0
    # Uniform noise half-widths around the target
    fill_volume_noise: float = 1.0
    line_speed_noise: float = 5.0
    temperature_noise: float = 0.15
    co2_pressure_noise: float = 0.05
    cap_torque_noise: float = 0.15
    cycle_time_noise: float = 0.05


@dataclass
class AlarmConfig:
    """Alarm thresholds."""

    fill_volume_pct: float = 1.0
    temperature_abs: float = 2.0
    co2_pressure_abs: float = 0.2
    cap_torque_pct: float = 10.0
    tank_low_pct: float = 15.0
    quality_streak: int = 3
    critical_pct: float = 8.0
    persistent_pct: float = 3.0
    history_size: int = 3


@dataclass
class Config:
    """Main configuration container."""

    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    topics: TopicConfig = field(default_factory=TopicConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    production: ProductionConfig = field(default_factory=ProductionConfig)
    alarms: AlarmConfig = field(default_factory=AlarmConfig)

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration."""
        return cls()

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not config_path.exists():
            return cls.default()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Config":
        """Load configuration from environment variables (and an optional .env file)."""
        load_dotenv(env_file)
        config = cls.default()

        # Override MQTT settings from env
        config.mqtt.broker = os.getenv("MQTT_BROKER", config.mqtt.broker)
        config.mqtt.port = int(os.getenv("MQTT_PORT", config.mqtt.port))
        config.mqtt.username = os.getenv("MQTT_USERNAME", config.mqtt.username)
        config.mqtt.password = os.getenv("MQTT_PASSWORD", config.mqtt.password)

        # Override topic hierarchy
        config.topics.plant = os.getenv("FILLER_PLANT", config.topics.plant)
        config.topics.line = os.getenv("FILLER_LINE", config.topics.line)
        config.topics.machine = os.getenv("FILLER_MACHINE", config.topics.machine)

        # Override simulation settings
        seed = os.getenv("SIMULATION_SEED")
        if seed:
            config.simulation.random_seed = int(seed)
        tick = os.getenv("SIMULATION_TICK_S")
        if tick:
            config.simulation.tick_interval_s = float(tick)

        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary, keeping defaults for missing keys."""
        config = cls.default()

        for section in fields(cls):
            section_data = data.get(section.name)
            if not section_data:
                continue
            current = getattr(config, section.name)
            known = {f.name for f in fields(current)}
            unknown = set(section_data) - known
            if unknown:
                raise ValueError(
                    f"Unknown keys in '{section.name}' section: {sorted(unknown)}"
                )
            setattr(config, section.name, type(current)(**{**asdict(current), **section_data}))

        return config

    def to_dict(self) -> Dict[str, Any]:
        return {section.name: asdict(getattr(self, section.name)) for section in fields(self)}

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
