"""On-disk configuration for the signer and its validation."""

from __future__ import annotations

import json
import os
import re
import stat
from dataclasses import dataclass, field
from enum import Enum

import yaml

from horcrux.address import _go_quote, _parse_url, _split_host_port, multi_address


class ConfigError(ValueError):
    """Raised when configuration is invalid or files are missing."""


class SignMode(str, Enum):
    THRESHOLD = "threshold"
    SINGLE = "single"


_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_NUMBER = re.compile(r"(\d*)(?:\.(\d*))?")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``1.5s`` or ``500ms`` into seconds."""
    quoted = _go_quote(text)
    s = text
    negative = False
    if s[:1] in ("-", "+"):
        negative = s[0] == "-"
        s = s[1:]
    if s == "0":
        return 0.0
    if s == "":
        raise ConfigError(f"time: invalid duration {quoted}")
    total = 0.0
    while s:
        m = _NUMBER.match(s)
        whole, frac = m.group(1), m.group(2)
        if not whole and not frac:
            raise ConfigError(f"time: invalid duration {quoted}")
        value = float(f"{whole or '0'}.{frac or '0'}")
        s = s[m.end():]
        i = 0
        while i < len(s) and s[i] != "." and not s[i].isdigit():
            i += 1
        unit, s = s[:i], s[i:]
        if unit == "":
            raise ConfigError(f"time: missing unit in duration {quoted}")
        if unit not in _UNITS:
            raise ConfigError(f"time: unknown unit {_go_quote(unit)} in duration {quoted}")
        total += value * _UNITS[unit]
    return -total if negative else total


def parse_url(raw: str):
    """Parse a URL strictly; raises ConfigError with a 'parse "..."' message."""
    try:
        return _parse_url(raw)
    except ValueError as exc:
        raise ConfigError(str(exc)) from None


@dataclass
class ChainNode:
    priv_val_addr: str

    def validate(self) -> None:
        parse_url(self.priv_val_addr)


@dataclass
class CosignerConfig:
    shard_id: int
    p2p_addr: str


@dataclass
class ThresholdModeConfig:
    threshold: int = 0
    cosigners: list[CosignerConfig] | None = None
    grpc_timeout: str = ""
    raft_timeout: str = ""

    def leader_elect_multi_address(self) -> str:
        return multi_address([c.p2p_addr for c in self.cosigners or []])


def validate_chain_nodes(nodes: list[ChainNode] | None) -> None:
    for node in nodes or []:
        node.validate()


def _duplicate_cosigners(cosigners: list[CosignerConfig]) -> dict[int, list[str]]:
    by_id: dict[int, list[str]] = {}
    for c in cosigners:
        by_id.setdefault(c.shard_id, []).append(c.p2p_addr)
    return {k: v for k, v in by_id.items() if len(v) > 1}


def validate_cosigners(cosigners: list[CosignerConfig] | None) -> None:
    cosigners = cosigners or []
    dupes = _duplicate_cosigners(cosigners)
    if dupes:
        rendered = " ".join(f"{k}:[{' '.join(v)}]" for k, v in sorted(dupes.items()))
        raise ConfigError(f"found duplicate cosigner shard ID(s) in args: map[{rendered}]")
    shards = len(cosigners)
    for c in cosigners:
        if c.shard_id < 1 or c.shard_id > shards:
            raise ConfigError(
                f"cosigner shard ID {c.shard_id} in args is out of range, "
                f"must be between 1 and {shards}, inclusive"
            )
        try:
            url = _parse_url(c.p2p_addr)
        except ValueError as exc:
            raise ConfigError(
                f"failed to parse cosigner (shard ID: {c.shard_id}) p2p address: {exc}"
            ) from None
        try:
            host, _ = _split_host_port(url.host)
        except ValueError as exc:
            raise ConfigError(
                f"failed to parse cosigner (shard ID: {c.shard_id}) host port: {exc}"
            ) from None
        if host == "0.0.0.0":
            raise ConfigError("host cannot be 0.0.0.0, must be reachable from other cosigners")


def cosigners_from_flag(cosigners: list[str]) -> list[CosignerConfig]:
    return [CosignerConfig(shard_id=i, p2p_addr=c) for i, c in enumerate(cosigners, start=1)]


def chain_nodes_from_flag(nodes: list[str]) -> list[ChainNode]:
    out = [ChainNode(priv_val_addr=n) for n in nodes]
    validate_chain_nodes(out)
    return out


def _scalar(value) -> str:
    if isinstance(value, bool) or isinstance(value, int):
        return str(value).lower() if isinstance(value, bool) else str(value)
    text = str(value)
    if text == "":
        return '""'
    dumped = yaml.safe_dump(text, width=float("inf"))
    if dumped.endswith("\n...\n"):
        dumped = dumped[: -len("\n...\n")]
    dumped = dumped.rstrip("\n")
    if dumped == text:
        return text
    return json.dumps(text, ensure_ascii=False)


@dataclass
class Config:
    priv_val_key_dir: str | None = None
    sign_mode: SignMode | str = ""
    threshold_mode_config: ThresholdModeConfig | None = None
    chain_nodes: list[ChainNode] | None = None
    debug_addr: str = ""
    grpc_addr: str = ""
    max_read_size: int = 0

    def nodes(self) -> list[str]:
        return [n.priv_val_addr for n in self.chain_nodes or []]

    def to_yaml(self) -> str:
        lines = []
        if self.priv_val_key_dir is not None:
            lines.append(f"keyDir: {_scalar(self.priv_val_key_dir)}")
        mode = self.sign_mode.value if isinstance(self.sign_mode, SignMode) else self.sign_mode
        lines.append(f"signMode: {_scalar(mode)}")
        tmc = self.threshold_mode_config
        if tmc is not None:
            lines.append("thresholdMode:")
            lines.append(f"  threshold: {tmc.threshold}")
            if tmc.cosigners:
                lines.append("  cosigners:")
                for c in tmc.cosigners:
                    lines.append(f"  - shardID: {c.shard_id}")
                    lines.append(f"    p2pAddr: {_scalar(c.p2p_addr)}")
            else:
                lines.append("  cosigners: []")
            lines.append(f"  grpcTimeout: {_scalar(tmc.grpc_timeout)}")
            lines.append(f"  raftTimeout: {_scalar(tmc.raft_timeout)}")
        if self.chain_nodes:
            lines.append("chainNodes:")
            for n in self.chain_nodes:
                lines.append(f"- privValAddr: {_scalar(n.priv_val_addr)}")
        else:
            lines.append("chainNodes: []")
        lines.append(f"debugAddr: {_scalar(self.debug_addr)}")
        lines.append(f"grpcAddr: {_scalar(self.grpc_addr)}")
        lines.append(f"maxReadSize: {self.max_read_size}")
        return "\n".join(lines) + "\n"

    @classmethod
    def from_yaml(cls, text: str) -> "Config":
        data = yaml.safe_load(text) or {}
        if not isinstance(data, dict):
            raise ConfigError("config must be a mapping")
        mode = data.get("signMode") or ""
        try:
            mode = SignMode(mode)
        except ValueError:
            pass
        tmc = None
        raw_tmc = data.get("thresholdMode")
        if raw_tmc is not None:
            raw_cosigners = raw_tmc.get("cosigners")
            tmc = ThresholdModeConfig(
                threshold=int(raw_tmc.get("threshold") or 0),
                cosigners=None if raw_cosigners is None else [
                    CosignerConfig(int(c.get("shardID") or 0), str(c.get("p2pAddr") or ""))
                    for c in raw_cosigners
                ],
                grpc_timeout=str(raw_tmc.get("grpcTimeout") or ""),
                raft_timeout=str(raw_tmc.get("raftTimeout") or ""),
            )
        raw_nodes = data.get("chainNodes")
        key_dir = data.get("keyDir")
        return cls(
            priv_val_key_dir=None if key_dir is None else str(key_dir),
            sign_mode=mode,
            threshold_mode_config=tmc,
            chain_nodes=None if not raw_nodes else [
                ChainNode(str(n.get("privValAddr") or "")) for n in raw_nodes
            ],
            debug_addr=str(data.get("debugAddr") or ""),
            grpc_addr=str(data.get("grpcAddr") or ""),
            max_read_size=int(data.get("maxReadSize") or 0),
        )

    def validate_single_signer_config(self) -> None:
        validate_chain_nodes(self.chain_nodes)

    def validate_threshold_mode_config(self) -> None:
        self.validate_single_signer_config()
        tmc = self.threshold_mode_config
        if tmc is None:
            raise ConfigError("cosigner config can't be empty")
        num_shards = len(tmc.cosigners or [])
        if tmc.threshold <= num_shards // 2:
            raise ConfigError(
                f"threshold ({tmc.threshold}) must be greater than number of shards ({num_shards}) / 2"
            )
        if num_shards < tmc.threshold:
            raise ConfigError(
                f"number of shards ({num_shards}) must be greater or equal to threshold ({tmc.threshold})"
            )
        try:
            parse_duration(tmc.raft_timeout)
        except ConfigError as exc:
            raise ConfigError(f"invalid raftTimeout: {exc}") from None
        try:
            parse_duration(tmc.grpc_timeout)
        except ConfigError as exc:
            raise ConfigError(f"invalid grpcTimeout: {exc}") from None
        validate_cosigners(tmc.cosigners)


def _require_file(path: str) -> None:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        raise ConfigError(
            f"file doesn't exist at path ({path}): stat {path}: no such file or directory"
        ) from None
    except OSError as exc:
        raise ConfigError(
            f"unexpected error checking file existence ({path}): stat {path}: {exc.strerror}"
        ) from None
    if stat.S_ISDIR(st.st_mode):
        raise ConfigError(f"path is not a file ({path})")


@dataclass
class RuntimeConfig:
    home_dir: str = ""
    config_file: str = ""
    state_dir: str = ""
    pid_file: str = ""
    config: Config = field(default_factory=Config)

    def _key_dir(self) -> str:
        return self.config.priv_val_key_dir or self.home_dir

    def key_file_path_single_signer(self, chain_id: str) -> str:
        return os.path.join(self._key_dir(), f"{chain_id}_priv_validator_key.json")

    def key_file_path_cosigner(self, chain_id: str) -> str:
        return os.path.join(self._key_dir(), f"{chain_id}_shard.json")

    def key_file_path_cosigner_rsa(self) -> str:
        return os.path.join(self._key_dir(), "rsa_keys.json")

    def key_file_path_cosigner_ecies(self) -> str:
        return os.path.join(self._key_dir(), "ecies_keys.json")

    def priv_val_state_file(self, chain_id: str) -> str:
        return os.path.join(self.state_dir, f"{chain_id}_priv_validator_state.json")

    def cosigner_state_file(self, chain_id: str) -> str:
        return os.path.join(self.state_dir, f"{chain_id}_share_sign_state.json")

    def write_config_file(self) -> None:
        fd = os.open(self.config_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(self.config.to_yaml())

    def key_file_exists_single_signer(self, chain_id: str) -> str:
        path = self.key_file_path_single_signer(chain_id)
        _require_file(path)
        return path

    def key_file_exists_cosigner(self, chain_id: str) -> str:
        path = self.key_file_path_cosigner(chain_id)
        _require_file(path)
        return path

    def key_file_exists_cosigner_rsa(self) -> str:
        path = self.key_file_path_cosigner_rsa()
        _require_file(path)
        return path

    def key_file_exists_cosigner_ecies(self) -> str:
        path = self.key_file_path_cosigner_ecies()
        _require_file(path)
        return path