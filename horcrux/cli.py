"""Command line interface: configuration setup and version information."""

from __future__ import annotations

import argparse
import json
import os
import platform
import sys
from dataclasses import asdict, dataclass
from importlib.metadata import PackageNotFoundError, version as _dist_version

import yaml

from horcrux.config import (
    Config,
    ConfigError,
    RuntimeConfig,
    SignMode,
    ThresholdModeConfig,
    chain_nodes_from_flag,
    cosigners_from_flag,
)

COMMIT = ""
DEFAULT_MAX_READ_SIZE = 1024 * 1024


@dataclass
class VersionInfo:
    """Version information of the application and its runtime."""

    version: str
    commit: str
    python_version: str
    pyyaml_version: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)


def version_info() -> VersionInfo:
    """Collect version information for the running program."""
    try:
        app_version = _dist_version("horcrux")
    except PackageNotFoundError:
        app_version = ""
    runtime = (
        f"{platform.python_implementation()} {platform.python_version()} "
        f"{sys.platform}/{platform.machine()}"
    )
    return VersionInfo(
        version=app_version,
        commit=COMMIT,
        python_version=runtime,
        pyyaml_version=getattr(yaml, "__version__", ""),
    )


def _split_list(values: list[str] | None) -> list[str]:
    """Flatten repeated, comma separated flag values."""
    out: list[str] = []
    for value in values or []:
        out.extend(part for part in value.split(",") if part != "")
    return out


def load_runtime_config(home: str | None) -> RuntimeConfig:
    """Build the runtime configuration for ``home`` and read its config file if present."""
    if not home:
        home = os.path.join(os.path.expanduser("~"), ".horcrux")
    runtime = RuntimeConfig(
        home_dir=home,
        config_file=os.path.join(home, "config.yaml"),
        state_dir=os.path.join(home, "state"),
        pid_file=os.path.join(home, "horcrux.pid"),
    )
    try:
        with open(runtime.config_file, encoding="utf-8") as fh:
            text = fh.read()
    except FileNotFoundError:
        print(f"no config exists at default location {runtime.config_file}", file=sys.stderr)
        return runtime
    try:
        runtime.config = Config.from_yaml(text)
    except (yaml.YAMLError, TypeError, AttributeError, ValueError) as exc:
        raise ConfigError(f"failed to read config file {runtime.config_file}: {exc}") from None
    return runtime


def init_config(config: RuntimeConfig, args: argparse.Namespace) -> str:
    """Create the configuration file from parsed ``config init`` arguments.

    Returns the path of the written file.
    """
    chain_nodes = chain_nodes_from_flag(_split_list(args.node))

    if os.path.exists(config.config_file) and not args.overwrite:
        raise ConfigError(
            f"{config.config_file} already exists. "
            "Provide the -o flag to overwrite the existing config"
        )

    key_dir = args.key_dir or None
    if args.mode == SignMode.THRESHOLD.value:
        cfg = Config(
            sign_mode=SignMode.THRESHOLD,
            priv_val_key_dir=key_dir,
            threshold_mode_config=ThresholdModeConfig(
                threshold=args.threshold,
                cosigners=cosigners_from_flag(_split_list(args.cosigner)) or None,
                grpc_timeout=args.grpc_timeout,
                raft_timeout=args.raft_timeout,
            ),
            chain_nodes=chain_nodes,
            debug_addr=args.debug_addr,
            grpc_addr=args.grpc_address,
            max_read_size=args.max_read_size,
        )
        if not args.bare:
            cfg.validate_threshold_mode_config()
    else:
        cfg = Config(
            sign_mode=SignMode.SINGLE,
            priv_val_key_dir=key_dir,
            chain_nodes=chain_nodes,
            debug_addr=args.debug_addr,
            max_read_size=args.max_read_size,
        )
        if not args.bare:
            cfg.validate_single_signer_config()

    os.makedirs(config.state_dir, mode=0o755, exist_ok=True)
    config.config = cfg
    config.write_config_file()
    return config.config_file


def _run_init(config: RuntimeConfig, args: argparse.Namespace) -> int:
    path = init_config(config, args)
    print(f"Successfully initialized configuration: {path}")
    return 0


def _run_version(config: RuntimeConfig, args: argparse.Namespace) -> int:
    info = version_info()
    sys.stdout.write(info.to_json() + "\n")
    sys.stdout.flush()
    return 0


def _help_for(parser: argparse.ArgumentParser):
    def show(config: RuntimeConfig, args: argparse.Namespace) -> int:
        parser.print_help()
        return 0

    return show


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--home",
        default=argparse.SUPPRESS,
        help="Directory for config and data (default is $HOME/.horcrux)",
    )

    parser = argparse.ArgumentParser(
        prog="horcrux",
        description="A tendermint remote signer with both threshold signer and single signer modes",
        parents=[common],
    )
    sub = parser.add_subparsers(dest="command")

    config_p = sub.add_parser(
        "config", parents=[common], help="Commands to configure the horcrux signer"
    )
    config_p.set_defaults(handler=_help_for(config_p))
    config_sub = config_p.add_subparsers(dest="config_command")

    init_p = config_sub.add_parser(
        "init",
        aliases=["i"],
        parents=[common],
        help="initialize configuration file and home directory if one doesn't already exist",
        description="initialize configuration file. for threshold signer mode, "
        "--cosigner flags and --threshold flag are required.",
    )
    init_p.add_argument(
        "-m", "--mode", default=SignMode.THRESHOLD.value,
        help='sign mode, "threshold" (recommended) or "single" (unsupported)',
    )
    init_p.add_argument(
        "-n", "--node", action="append", default=None,
        help="chain nodes in format tcp://{node-addr}:{privval-port}",
    )
    init_p.add_argument(
        "-c", "--cosigner", action="append", default=None,
        help="cosigners in format tcp://{cosigner-addr}:{p2p-port}",
    )
    init_p.add_argument(
        "-t", "--threshold", type=int, default=0,
        help="number of shards required for threshold signature",
    )
    init_p.add_argument(
        "-d", "--debug-addr", default="",
        help="listen address for debug server and prometheus metrics",
    )
    init_p.add_argument("-k", "--key-dir", default="", help="key directory if other than home directory")
    init_p.add_argument("--raft-timeout", default="500ms", help="cosigner raft timeout value, e.g. 1s, 1000ms")
    init_p.add_argument("--grpc-timeout", default="500ms", help="cosigner grpc timeout value, e.g. 1s, 1000ms")
    init_p.add_argument("-o", "--overwrite", action="store_true", help="overwrite an existing config.yaml")
    init_p.add_argument(
        "--bare", action="store_true",
        help="allows initialization without providing any flags; skips final validation",
    )
    init_p.add_argument(
        "-g", "--gprc-address", dest="grpc_address", default="",
        help="GRPC address if listener should be enabled",
    )
    init_p.add_argument(
        "--max-read-size", type=int, default=DEFAULT_MAX_READ_SIZE,
        help="max read size for remote signer connection",
    )
    init_p.set_defaults(handler=_run_init)

    version_p = sub.add_parser("version", parents=[common], help="Version information for horcrux")
    version_p.set_defaults(handler=_run_version)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the command line interface and return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 0
    try:
        config = load_runtime_config(getattr(args, "home", None))
        return handler(config, args)
    except (ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1