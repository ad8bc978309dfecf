"""
Hybrid vote encryption and receipt hashing.

Each vote is sealed under a single-use AES-256-GCM key which is then wrapped
with the tallying authority's RSA public key. Only the holder of the private
key can open an envelope; anyone holding the four plaintext fields can
recompute the receipt hash.
"""

import json
import secrets

import pydantic

from ..models.exceptions import AuthenticationError, DecryptionError, ValidationError
from ..models.vote_models import SealedVote, VoteEnvelope, VoteRecord
from . import symmetric_cipher
from .hashing import sha256
from .key_service import (
    AsymmetricKeyService,
    PrivateKeyLike,
    PublicKeyLike,
    unwrap_key,
    wrap_key,
)

VOTE_HASH_DELIMITER = "-"


def canonical_bytes(record: VoteRecord) -> bytes:
    """Stable serialization of a record: sorted camelCase keys, no whitespace."""
    return json.dumps(
        record.model_dump(by_alias=True), sort_keys=True, separators=(",", ":")
    ).encode("utf-8")


def encrypt_vote(record: VoteRecord, public_key: PublicKeyLike) -> VoteEnvelope:
    """Seals `record` under a fresh ephemeral key wrapped for `public_key`."""
    ephemeral_key = symmetric_cipher.generate_key()
    sealed = symmetric_cipher.encrypt(canonical_bytes(record), ephemeral_key)
    wrapped = wrap_key(ephemeral_key, public_key)

    return VoteEnvelope(
        encrypted_payload=sealed.ciphertext_hex,
        wrapped_key=wrapped,
        iv=sealed.iv_hex,
        auth_tag=sealed.auth_tag_hex,
    )


def decrypt_vote(envelope: VoteEnvelope, private_key: PrivateKeyLike) -> VoteRecord:
    """
    Opens an envelope. Raises DecryptionError when the key cannot be unwrapped,
    AuthenticationError when the payload, IV or tag were altered, and
    ValidationError when the authenticated plaintext is not a vote record.
    The candidate choice is not range-checked here.
    """
    ephemeral_key = unwrap_key(envelope.wrapped_key, private_key)
    if len(ephemeral_key) != symmetric_cipher.KEY_BYTES:
        raise DecryptionError("Unwrapped key has an unexpected length")

    try:
        ciphertext = bytes.fromhex(envelope.encrypted_payload)
        iv = bytes.fromhex(envelope.iv)
        auth_tag = bytes.fromhex(envelope.auth_tag)
    except ValueError:
        raise AuthenticationError("Envelope fields are not valid hex") from None

    plaintext = symmetric_cipher.decrypt(ciphertext, ephemeral_key, iv, auth_tag)

    try:
        return VoteRecord.model_validate_json(plaintext)
    except pydantic.ValidationError:
        raise ValidationError("Decrypted payload is not a valid vote record") from None


def compute_vote_hash(
    election_ref: str, voter_ref: str, candidate_choice: int, timestamp: int
) -> str:
    """
    SHA-256 receipt over '{election_ref}-{voter_ref}-{candidate_choice}-{timestamp}'.
    The field order is fixed; reordering changes every receipt ever issued.
    """
    data = VOTE_HASH_DELIMITER.join(
        [election_ref, voter_ref, str(candidate_choice), str(timestamp)]
    )
    return sha256(data)


def vote_hash_for(record: VoteRecord) -> str:
    return compute_vote_hash(
        record.election_ref,
        record.voter_ref,
        record.candidate_choice,
        record.timestamp,
    )


class VoteEnvelopeCodec:
    """Binds the envelope protocol to an authority key pair."""

    keys: AsymmetricKeyService

    def __init__(self, key_service: AsymmetricKeyService):
        self.keys = key_service

    def seal(self, record: VoteRecord) -> SealedVote:
        """Encrypts a vote and issues its receipt hash, signed by the authority."""
        envelope = encrypt_vote(record, self.keys.public_key)
        vote_hash = vote_hash_for(record)
        return SealedVote(
            envelope=envelope,
            vote_hash=vote_hash,
            signature=self.keys.sign(vote_hash),
        )

    def open(self, envelope: VoteEnvelope) -> VoteRecord:
        return decrypt_vote(envelope, self.keys.private_key)

    def verify_receipt(self, record: VoteRecord, vote_hash: str) -> bool:
        return secrets.compare_digest(
            vote_hash_for(record).encode(), vote_hash.encode()
        )

    def verify_receipt_signature(self, vote_hash: str, signature: str) -> bool:
        return self.keys.verify(vote_hash, signature)
