"""Ed25519 key shards of a threshold signer and their JSON file format."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from pathlib import Path

ED25519_PUBKEY_SIZE = 32
_AMINO_ED25519_PREFIX = bytes.fromhex("1624de64")


class KeyFormatError(ValueError):
    """Raised when a key file or encoded public key cannot be read."""


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise KeyFormatError("unexpected EOF")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if byte < 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise KeyFormatError("proto: integer overflow")


def _write_varint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


_KEY_FIELDS = {1: "ed25519", 2: "secp256k1"}


def _parse_public_key_proto(data: bytes) -> tuple[str, bytes] | None:
    found = None
    pos = 0
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        field_no, wire = tag >> 3, tag & 7
        if field_no == 0:
            raise KeyFormatError("proto: PublicKey: illegal tag 0")
        if field_no in _KEY_FIELDS and wire != 2:
            raise KeyFormatError(
                f"proto: wrong wireType = {wire} for field {_KEY_FIELDS[field_no]}"
            )
        if wire == 0:
            _, pos = _read_varint(data, pos)
        elif wire == 1:
            pos += 8
        elif wire == 5:
            pos += 4
        elif wire == 2:
            length, pos = _read_varint(data, pos)
            end = pos + length
            if end > len(data):
                raise KeyFormatError("unexpected EOF")
            if field_no in _KEY_FIELDS:
                found = (_KEY_FIELDS[field_no], data[pos:end])
            pos = end
        else:
            raise KeyFormatError(f"proto: PublicKey: illegal wireType {wire}")
        if pos > len(data):
            raise KeyFormatError("unexpected EOF")
    return found


def _decode_amino(data: bytes) -> bytes:
    if not data.startswith(_AMINO_ED25519_PREFIX):
        raise KeyFormatError("amino: prefix bytes do not match tendermint/PubKeyEd25519")
    length, pos = _read_varint(data, len(_AMINO_ED25519_PREFIX))
    end = pos + length
    if end > len(data):
        raise KeyFormatError("unexpected EOF")
    if end != len(data):
        raise KeyFormatError("amino: remaining bytes after decoding")
    return data[pos:end]


def encode_pubkey_proto(pub_key: bytes) -> bytes:
    """Encode an Ed25519 public key as a protobuf PublicKey message."""
    return b"\x0a" + _write_varint(len(pub_key)) + bytes(pub_key)


def decode_pubkey(data: bytes) -> bytes:
    """Decode an Ed25519 public key from protobuf, or from the older amino form."""
    try:
        found = _parse_public_key_proto(data)
    except KeyFormatError as proto_err:
        try:
            return _decode_amino(data)
        except KeyFormatError:
            raise proto_err from None
    if found is None:
        raise KeyFormatError("fromproto: key type <nil> is not supported")
    kind, raw = found
    if kind != "ed25519":
        raise KeyFormatError(f"fromproto: key type {kind} is not supported")
    if len(raw) != ED25519_PUBKEY_SIZE:
        raise KeyFormatError(
            f"invalid size for PubKeyEd25519. Got {len(raw)}, expected {ED25519_PUBKEY_SIZE}"
        )
    return raw


def _b64decode(value, name: str) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise KeyFormatError(f"{name} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyFormatError(f"{name}: illegal base64 data: {exc}") from None


@dataclass
class CosignerEd25519Key:
    """A single Ed25519 key shard for an m-of-n threshold signer."""

    pub_key: bytes
    private_shard: bytes
    id: int

    def to_json(self) -> bytes:
        """Serialize to the compact JSON stored in shard files."""
        doc = {
            "pubKey": base64.b64encode(encode_pubkey_proto(self.pub_key)).decode("ascii"),
            "privateShard": base64.b64encode(self.private_shard).decode("ascii"),
            "id": self.id,
        }
        return json.dumps(doc, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> "CosignerEd25519Key":
        """Parse a shard file's JSON contents."""
        try:
            doc = json.loads(data)
        except json.JSONDecodeError as exc:
            raise KeyFormatError(str(exc)) from None
        if not isinstance(doc, dict):
            raise KeyFormatError("key file must hold a JSON object")
        key_id = doc.get("id", 0)
        if key_id is None:
            key_id = 0
        if not isinstance(key_id, int) or isinstance(key_id, bool):
            raise KeyFormatError("id must be an integer")
        pub_key = decode_pubkey(_b64decode(doc.get("pubKey"), "pubKey"))
        return cls(
            pub_key=pub_key,
            private_shard=_b64decode(doc.get("privateShard"), "privateShard"),
            id=key_id,
        )


def load_cosigner_ed25519_key(path: str | Path) -> CosignerEd25519Key:
    """Load a key shard from a file."""
    return CosignerEd25519Key.from_json(Path(path).read_bytes())