"""Idempotency keys for job admission.

Bots retransmit on the same source message id, apps on the same client request id.
Either one makes the key deterministic. A client nonce covers callers that have
neither; with none of the three, every call is a new logical request.
"""

import re
from typing import Optional
from uuid import UUID, uuid4

from vitrine.models.job import SourceChannel

_MAX_PART_LENGTH = 128
_PART_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]+$")


def _validate_part(name: str, value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{name} cannot be empty")
    if len(value) > _MAX_PART_LENGTH:
        raise ValueError(f"{name} exceeds maximum length of {_MAX_PART_LENGTH} characters")
    if not _PART_PATTERN.match(value):
        raise ValueError(f"{name} contains unsupported characters")
    return value


def build_idempotency_key(
    channel: SourceChannel,
    account_id: UUID,
    source_message_id: Optional[str] = None,
    client_request_id: Optional[str] = None,
    nonce: Optional[str] = None,
) -> str:
    """Compute the admission idempotency key.

    Precedence: source message id, then client request id, then nonce. The account id
    is part of every key so two accounts can never collide on a client-chosen value.

    Raises:
        ValueError: If a supplied identifier is empty, too long or malformed
    """
    if source_message_id is not None:
        ref = f"msg:{_validate_part('source_message_id', source_message_id)}"
    elif client_request_id is not None:
        ref = f"req:{_validate_part('client_request_id', client_request_id)}"
    elif nonce is not None:
        ref = f"nonce:{_validate_part('nonce', nonce)}"
    else:
        ref = f"new:{uuid4().hex}"
    return f"{channel.value}:{account_id}:{ref}"

