# horcrux

Building blocks for a threshold remote signer: an m-of-n set of cosigners
that each hold one shard of a validator key and cooperate to produce
signatures.

## What is in the package

- `horcrux.config` – the on-disk YAML configuration (`Config`,
  `ThresholdModeConfig`, `CosignerConfig`, `ChainNode`, `SignMode`), its
  validation rules (`validate_single_signer_config`,
  `validate_threshold_mode_config`, `validate_cosigners`,
  `validate_chain_nodes`), duration parsing (`parse_duration`, e.g. `500ms`,
  `1.5s`) and the file layout of a home directory (`RuntimeConfig`). Invalid
  configuration raises `ConfigError`.
- `horcrux.address` – `sanitize_address` returns the `host:port` part of a
  `tcp://host:port` address; `multi_address` joins several of them into a
  `multi:///host1:port,host2:port` target.
- `horcrux.keys` – `CosignerEd25519Key` with `to_json` / `from_json`,
  `load_cosigner_ed25519_key`, and `encode_pubkey_proto` / `decode_pubkey`
  for the public key encoding used in shard files (the older amino encoding
  is still read). Unreadable data raises `KeyFormatError`.
- `horcrux.cosigner` – abstract `Cosigner`, `Leader` and `CosignerSecurity`
  interfaces, the nonce types `CosignerNonce` and `CosignerUUIDNonces`,
  `CosignerSignResponse`, and `get_by_id`.
- `horcrux.health` – `CosignerHealth` pings remote cosigners while this node
  is leader and `get_fastest` orders cosigners by round-trip time, unhealthy
  or unmeasured ones last.
- `horcrux.nonce_cache` – `CosignerNonceCache` keeps enough pre-fetched nonce
  sets cached to meet demand (measured with `MovingAverage`), prunes expired
  ones, hands out the oldest set covering the requested peers with
  `get_nonces` (raising `NoNoncesError` when none does) and drops a cosigner
  with `clear_nonces`.
- `horcrux.cond` – `Cond`, a broadcast-only condition variable with
  `wait_with_timeout`.
- `horcrux.cli` – the `horcrux` command.

## Installation

```
pip install .
```

## The command

### Creating a configuration

Threshold mode needs the cosigners and a threshold greater than half of them:

```
horcrux config init \
  -n tcp://10.168.0.1:1234 -n tcp://10.168.0.2:1234 \
  -c tcp://10.168.1.1:2222 -c tcp://10.168.1.2:2222 -c tcp://10.168.1.3:2222 \
  -t 2 --raft-timeout 500ms --grpc-timeout 500ms
```

Single-signer mode:

```
horcrux config init -m single -n tcp://10.168.0.1:1234
```

`-n` and `-c` may be repeated or given comma separated lists; cosigners get
shard IDs 1, 2, 3, … in the order given. Other options of `config init`
(alias `config i`):

- `-m`, `--mode` – `threshold` (default) or `single`
- `-t`, `--threshold` – shards required for a signature
- `--raft-timeout`, `--grpc-timeout` – durations, default `500ms`
- `-d`, `--debug-addr` – debug listen address to record
- `-k`, `--key-dir` – key directory if other than the home directory
- `-g`, `--gprc-address` – gRPC listen address to record (threshold mode)
- `--max-read-size` – default 1048576
- `-o`, `--overwrite` – replace an existing `config.yaml`
- `--bare` – write the file without validating it

The file is written to `$HOME/.horcrux/config.yaml` and the `state`
directory is created next to it; pass `--home DIR` to use another directory.
Errors are printed as `Error: ...` and the command exits with status 1.

### Version information

```
horcrux version
```

prints a JSON object with `version`, `commit`, `python_version` and
`pyyaml_version`.

## Using the library

```python
from horcrux.config import Config, ThresholdModeConfig, CosignerConfig, SignMode

cfg = Config(
    sign_mode=SignMode.THRESHOLD,
    threshold_mode_config=ThresholdModeConfig(
        threshold=2,
        cosigners=[
            CosignerConfig(shard_id=1, p2p_addr="tcp://127.0.0.1:2222"),
            CosignerConfig(shard_id=2, p2p_addr="tcp://127.0.0.1:2223"),
            CosignerConfig(shard_id=3, p2p_addr="tcp://127.0.0.1:2224"),
        ],
        grpc_timeout="1000ms",
        raft_timeout="1000ms",
    ),
)
cfg.validate_threshold_mode_config()   # raises ConfigError when invalid
print(cfg.to_yaml())
```

`CosignerHealth` and `CosignerNonceCache` work with any objects implementing
the `Cosigner` and `Leader` interfaces; `start(stop_event)` runs their loops
until the given `threading.Event` is set.

## What the package does not do

It does not sign anything and does not run a signer. There is no `start`
command, no network transport between cosigners (no gRPC server or client,
no Raft cluster or leader election), no concrete `Cosigner` or
`CosignerSecurity` implementation, no creation of key shards or of RSA/ECIES
keys, no sign-state storage or `state` commands, no address command, no
migration of older configuration, and no debug or metrics server. The
`horcrux` command only creates configuration files and prints version
information.

## Running the tests

```
pip install .[test]
pytest
```