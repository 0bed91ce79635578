"""Deterministic document identifiers derived from resource ARNs."""

import base64
import hashlib
import uuid


def encoded_named_uuid(name: str) -> str:
    """Return the base64url (unpadded) form of the name-based UUID of ``name``.

    The UUID is built the way ``java.util.UUID.nameUUIDFromBytes`` builds it:
    MD5 over the UTF-8 bytes, then the version 3 and IETF variant bits are
    set. The 16 bytes are serialized big-endian, which keeps ids stable
    against documents already written by earlier crawls.
    """
    if not name:
        raise ValueError("Target for converting to encoded named UUID is blank")

    digest = hashlib.md5(name.encode("utf-8")).digest()
    named = uuid.UUID(bytes=digest, version=3)
    return base64.urlsafe_b64encode(named.bytes).rstrip(b"=").decode("ascii")


def document_arn(document: dict) -> str:
    """Return the ARN that identifies ``document``, preferring ``ARN`` over ``arn``."""
    if "ARN" in document:
        return document["ARN"]
    return document.get("arn", "")


def document_id(document: dict) -> str:
    """Return the stored id of ``document``."""
    return encoded_named_uuid(document_arn(document))
