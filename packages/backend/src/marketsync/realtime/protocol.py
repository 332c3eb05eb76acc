"""Wire protocol — JSON text frames of the form {"type": ..., "payload": ...}.

Learn: Inbound frames are decoded in two steps. decode_envelope() only checks
that the frame is a JSON object with a string discriminator and pulls out the
body; anything else is a ProtocolError ("Invalid message format"). Mapping the
discriminator to a command and validating its body is the command
processor's job, so an unknown kind or a missing field is reported with a
precise message instead of a generic one.

The discriminator may be sent as "type" or "kind" and the body as "payload",
"body" or "data". The legacy marketplace client's message names
(add_product, edit_product, delete_product, get_products) are accepted as
aliases.
"""

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Optional


class ProtocolError(Exception):
    """Raised when an inbound frame is not a decodable envelope."""
    pass


class CommandKind(str, enum.Enum):
    CREATE_LISTING = "create_listing"
    UPDATE_LISTING = "update_listing"
    DELETE_LISTING = "delete_listing"
    LIST_ALL = "list_all"
    LIST_BY_SELLER = "list_by_seller"


LEGACY_KINDS: dict[str, CommandKind] = {
    "add_product": CommandKind.CREATE_LISTING,
    "edit_product": CommandKind.UPDATE_LISTING,
    "delete_product": CommandKind.DELETE_LISTING,
    "get_products": CommandKind.LIST_ALL,
}

# ─── Outbound message types ──────────────────────────────

CATALOG_SNAPSHOT = "catalog_snapshot"
SELLER_CATALOG = "seller_catalog"
CREATE_ACK = "create_ack"
UPDATE_ACK = "update_ack"
DELETE_ACK = "delete_ack"
LISTING_CREATED = "listing_created"
LISTING_UPDATED = "listing_updated"
LISTING_DELETED = "listing_deleted"
ERROR = "error"

_KIND_KEYS = ("type", "kind")
_BODY_KEYS = ("payload", "body", "data")


@dataclass(frozen=True)
class Envelope:
    """A decoded inbound frame: the raw discriminator and its (unvalidated) body."""

    kind: str
    body: Any = field(default_factory=dict)

    @property
    def command(self) -> Optional[CommandKind]:
        """The command this envelope names, or None if the kind is unknown."""
        try:
            return CommandKind(self.kind)
        except ValueError:
            return LEGACY_KINDS.get(self.kind)


def decode_envelope(raw: str | bytes) -> Envelope:
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError, RecursionError) as e:
        # RecursionError: nesting deeper than the decoder can follow
        raise ProtocolError(f"not valid JSON: {e}") from e

    if not isinstance(msg, dict):
        raise ProtocolError("frame must be a JSON object")

    kind = next((msg[k] for k in _KIND_KEYS if k in msg), None)
    if not isinstance(kind, str) or not kind.strip():
        raise ProtocolError("missing message type")

    body = next((msg[k] for k in _BODY_KEYS if msg.get(k) is not None), None)
    if body is None:
        # legacy delete_product carries the id at the top level
        body = {"id": msg["id"]} if "id" in msg else {}

    return Envelope(kind=kind.strip(), body=body)


def make_message(msg_type: str, payload: Any) -> dict[str, Any]:
    return {"type": msg_type, "payload": payload}


def error_message(text: str) -> dict[str, Any]:
    return make_message(ERROR, text)


def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False)
