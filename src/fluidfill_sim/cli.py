"""Command-line interface for the FluidFill Simulator."""

import json
import logging
import signal
import sys
import threading
from pathlib import Path

import click

from .config import Config
from .mqtt_client import MQTTClient
from .simulator import Simulator
from .timers import VirtualTimerService

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_config(config_path, broker=None, port=None, seed=None) -> Config:
    cfg = Config.from_yaml(config_path) if config_path else Config.from_env()
    if broker:
        cfg.mqtt.broker = broker
    if port:
        cfg.mqtt.port = port
    if seed is not None:
        cfg.simulation.random_seed = seed
    return cfg


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose):
    """FluidFill Simulator - beverage filling machine for telemetry testing.

    Simulates production counters, process deviations, alarms and the remote
    methods of a FluidFill Express filler, and republishes every change over
    MQTT.
    """
    _setup_logging(verbose)


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file (default: environment variables)",
)
@click.option("--broker", "-b", default=None, help="MQTT broker address")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option("--dry-run", is_flag=True, default=False, help="Do not connect to a broker")
@click.option(
    "--clean-start",
    is_flag=True,
    default=False,
    help="Clear all retained machine topics on startup",
)
def run(config_path, broker, port, seed, dry_run, clean_start):
    """Start the simulator and the MQTT bridge."""
    cfg = _load_config(config_path, broker, port, seed)

    mqtt_client = MQTTClient(cfg.mqtt, cfg.topics)
    sim = Simulator(cfg, mqtt_client=mqtt_client)

    stop_event = threading.Event()

    def signal_handler(sig, frame):
        logger.info("Shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not sim.start(dry_run=dry_run):
        click.echo("Error: could not start simulator", err=True)
        sys.exit(1)

    if clean_start:
        mqtt_client.clear_retained_topics(sim.snapshot().keys())
        mqtt_client.publish_snapshot(sim.snapshot())

    click.echo(f"Publishing to: {cfg.topics.base_topic}/#")
    click.echo(f"Methods on:    {mqtt_client.methods_topic}/<name>")
    click.echo("Press Ctrl+C to stop")

    while not stop_event.is_set():
        stop_event.wait(1)

    sim.stop()


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file",
)
@click.option("--ticks", "-n", type=click.IntRange(min=1), default=100, help="Ticks to simulate")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option(
    "--call",
    "calls",
    multiple=True,
    help="Method to invoke before ticking, e.g. 'AdjustFillVolume 1050' (repeatable)",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the final snapshot as JSON")
def simulate(config_path, ticks, seed, calls, as_json):
    """Run the simulator offline on a virtual clock and print the result."""
    cfg = _load_config(config_path, seed=seed)
    timers = VirtualTimerService()
    sim = Simulator(cfg, timers=timers)
    sim.start()

    for call in calls:
        name, *args = call.split()
        result = sim.invoke(name, *args)
        click.echo(f"{name}: {result.outcome.value} {result.output or result.error or ''}".rstrip())

    timers.advance(ticks * cfg.simulation.tick_interval_s)
    snapshot = sim.snapshot()
    sim.stop()

    if as_json:
        click.echo(json.dumps(snapshot, indent=2))
        return

    view = sim.view()
    click.echo(f"Simulated {ticks} ticks ({timers.now:.0f}s)")
    click.echo("=" * 40)
    click.echo(f"Status:        {view.machine_status.value}")
    click.echo(f"Station:       {view.current_station}")
    click.echo(f"Order:         {view.order_number} ({view.progress:.2f}%)")
    click.echo(f"Total bottles: {view.total_bottles}")
    click.echo(f"Good bottles:  {view.good_bottles}")
    click.echo(f"Bad bottles:   {view.total_bad_bottles}")
    click.echo(f"Tank level:    {view.tank_level:.3f}%")
    alarms = view.active_alarms
    click.echo(f"Active alarms: {len(alarms)}")
    for alarm in alarms:
        click.echo(f"  {alarm['parameter']}: {alarm['type']}")


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config"),
    help="Output directory for config files",
)
def init(output):
    """Generate a sample configuration file."""
    output.mkdir(parents=True, exist_ok=True)

    cfg = Config.default()
    config_path = output / "config.yaml"
    cfg.to_yaml(config_path)

    click.echo(f"Created: {config_path}")
    click.echo()
    click.echo("Edit the config file to customize:")
    click.echo("  - MQTT broker settings")
    click.echo("  - Plant/line/machine topic names")
    click.echo("  - Tick interval, delays and alarm thresholds")
    click.echo()
    click.echo(f"Run with: fluidfill-sim run --config {config_path}")


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file (default: environment variables)",
)
@click.option("--broker", "-b", default=None, help="MQTT broker address")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option("--timeout", type=float, default=5.0, help="Seconds to wait for the result")
@click.argument("method")
@click.argument("args", nargs=-1)
def call(config_path, broker, port, timeout, method, args):
    """Invoke a machine method over MQTT and print the result.

    Arguments are parsed as JSON where possible, so numbers stay numbers.
    """
    import paho.mqtt.client as mqtt

    cfg = _load_config(config_path, broker, port)
    topic = f"{cfg.topics.base_topic}/{MQTTClient.METHODS_SEGMENT}/{method}"
    result_topic = f"{topic}/Result"

    parsed = []
    for arg in args:
        try:
            parsed.append(json.loads(arg))
        except ValueError:
            parsed.append(arg)

    received = threading.Event()
    response = {}

    def on_connect(client, userdata, flags, rc, properties=None):
        if rc == 0:
            client.subscribe(result_topic, qos=1)
            client.publish(topic, json.dumps(parsed), qos=1)

    def on_message(client, userdata, msg):
        response.update(json.loads(msg.payload.decode()))
        received.set()

    client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
    if cfg.mqtt.username:
        client.username_pw_set(cfg.mqtt.username, cfg.mqtt.password)
    client.on_connect = on_connect
    client.on_message = on_message

    try:
        client.connect(cfg.mqtt.broker, cfg.mqtt.port)
        client.loop_start()
        if not received.wait(timeout):
            click.echo(f"Error: no result on {result_topic} within {timeout}s", err=True)
            sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        client.loop_stop()
        client.disconnect()

    click.echo(f"{method}: {response.get('outcome')}")
    if response.get("output"):
        click.echo(f"  Output: {response['output']}")
    if response.get("error"):
        click.echo(f"  Error: {response['error']}")


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file (default: environment variables)",
)
@click.option("--broker", "-b", default=None, help="MQTT broker address")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option(
    "--filter",
    "-f",
    "topic_filter",
    default="#",
    help="Topic filter below the machine path (default: # for all)",
)
def subscribe(config_path, broker, port, topic_filter):
    """Subscribe to machine topics and display messages."""
    import paho.mqtt.client as mqtt

    cfg = _load_config(config_path, broker, port)
    base = cfg.topics.base_topic
    full_topic = f"{base}/{topic_filter}"

    def on_message(client, userdata, msg):
        short_topic = msg.topic.replace(base + "/", "")
        try:
            payload = json.loads(msg.payload.decode())
            click.echo(f"{short_topic}: {json.dumps(payload)}")
        except ValueError:
            click.echo(f"{short_topic}: {msg.payload.decode()}")

    def on_connect(client, userdata, flags, rc, properties=None):
        if rc == 0:
            client.subscribe(full_topic)
            click.echo(f"Subscribed to: {full_topic}")
            click.echo("Press Ctrl+C to stop")
            click.echo("-" * 40)

    client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
    if cfg.mqtt.username:
        client.username_pw_set(cfg.mqtt.username, cfg.mqtt.password)
    client.on_connect = on_connect
    client.on_message = on_message

    try:
        client.connect(cfg.mqtt.broker, cfg.mqtt.port)
        client.loop_forever()
    except KeyboardInterrupt:
        click.echo("\nDisconnected")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
