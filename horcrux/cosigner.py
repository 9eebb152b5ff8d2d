"""Cosigner interfaces and the nonce types exchanged between cosigners."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable


@dataclass
class CosignerNonce:
    """One encrypted nonce share sent from one cosigner to another."""

    source_id: int
    destination_id: int
    pub_key: bytes = b""
    share: bytes = b""
    signature: bytes = b""


@dataclass
class CosignerUUIDNonces:
    """The nonces that belong to one signing round, identified by a UUID."""

    uuid: uuid.UUID
    nonces: list[CosignerNonce] = field(default_factory=list)

    def for_id(self, cosigner_id: int) -> "CosignerUUIDNonces":
        """Return only the nonces addressed to ``cosigner_id``."""
        return CosignerUUIDNonces(
            uuid=self.uuid,
            nonces=[n for n in self.nonces if n.destination_id == cosigner_id],
        )


@dataclass
class CosignerSignResponse:
    """A cosigner's partial signature and the nonce it was made with."""

    timestamp: datetime
    nonce_public: bytes = b""
    signature: bytes = b""
    vote_extension_nonce_public: bytes = b""
    vote_extension_signature: bytes = b""


class Cosigner(ABC):
    """One participant of an m-of-n threshold signature.

    The id is the shamir index: 1, 2, and so on. Cosigners reached over the
    network set ``remote`` to True and implement :meth:`ping`.
    """

    remote: bool = False

    @property
    @abstractmethod
    def id(self) -> int:
        """The shard ID of this cosigner."""

    @property
    @abstractmethod
    def address(self) -> str:
        """The P2P URL of this cosigner."""

    @abstractmethod
    def get_nonces(self, uuids: list[uuid.UUID]) -> list[CosignerUUIDNonces]:
        """Return nonces from this cosigner for every UUID, in order."""

    def ping(self, timeout: float) -> None:
        """Check that the cosigner answers within ``timeout`` seconds."""
        raise NotImplementedError("this cosigner cannot be pinged")


class Leader(ABC):
    """Knows whether this node currently leads the cluster."""

    @abstractmethod
    def is_leader(self) -> bool:
        """Return True if this node is the leader."""


class CosignerSecurity(ABC):
    """Encryption and authentication of nonces between cosigners."""

    @property
    @abstractmethod
    def id(self) -> int:
        """The shard ID of the local cosigner."""

    @abstractmethod
    def encrypt_and_sign(
        self, cosigner_id: int, nonce_pub: bytes, nonce_share: bytes
    ) -> CosignerNonce:
        """Encrypt a nonce for ``cosigner_id`` and sign it."""

    @abstractmethod
    def decrypt_and_verify(
        self,
        cosigner_id: int,
        encrypted_nonce_pub: bytes,
        encrypted_nonce_share: bytes,
        signature: bytes,
    ) -> tuple[bytes, bytes]:
        """Decrypt a nonce from ``cosigner_id`` and verify its signature.

        Returns the nonce public part and the nonce share.
        """


def get_by_id(cosigners: Iterable[Cosigner], cosigner_id: int) -> Cosigner | None:
    """Return the cosigner with the given ID, or None."""
    return next((c for c in cosigners if c.id == cosigner_id), None)