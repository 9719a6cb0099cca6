"""
Guestbook Backend: Feed Event Models
=====================================

What:  Decoded records surfaced by the feed iterators.
How:   Pydantic models built from the wire rows, using aliases for the
       CouchDB field names (`id`, `seq`, `changes`, `doc`, `type`).
Who:   Produced by `guestbook.couchdb.feeds`, read by feed consumers.

Wire shape of a change row:
    {"id": "doc1", "deleted": true, "seq": 5 | "5-g1AAA...",
     "changes": [{"rev": "2-abc"}], "doc": {...}}

The sequence token is an int on CouchDB 1.x and an opaque string on 2.x+.
It is kept as `int | str` and never parsed for structure.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

from guestbook.couchdb.errors import DecodeError

SequenceValue = Union[int, str]

# Wire values are never coerced: "yes" is not a bool and true is not a sequence.
StrictSequence = Union[StrictInt, StrictStr]


def decode_json_object(raw: bytes) -> Dict[str, Any]:
    """Decode raw bytes that must hold a single JSON object."""
    try:
        value = json.loads(raw)
    except ValueError as exc:
        raise DecodeError(
            f"invalid JSON in feed: {exc}",
            context={"raw": raw[:200]},
        ) from exc
    if not isinstance(value, dict):
        raise DecodeError(
            f"expected a JSON object, got {type(value).__name__}",
            context={"raw": raw[:200]},
        )
    return value


class ChangeEvent(BaseModel):
    """
    One notification from a database `_changes` feed.

    Fields:
        document_id:       ID of the changed document
        deleted:           True when the change deleted the document
        sequence:          Update sequence of this change (int or opaque string)
        revisions:         Leaf revisions of the document after the change
        document_snapshot: The document as raw JSON text; only present when
                           the feed was opened with include_docs=true
    """

    document_id: StrictStr = Field(default="", alias="id")
    deleted: StrictBool = False
    sequence: Optional[StrictSequence] = Field(default=None, alias="seq")
    revisions: List[StrictStr] = Field(default_factory=list, alias="changes")
    document_snapshot: Optional[str] = Field(default=None, alias="doc")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("revisions", mode="before")
    @classmethod
    def flatten_changes(cls, v: Any) -> Any:
        """Accepts the wire form `[{"rev": "1-a"}]` as well as plain strings."""
        if v is None:
            return []
        if not isinstance(v, list):
            return v
        revs = []
        for entry in v:
            if isinstance(entry, dict):
                if "rev" not in entry:
                    raise ValueError("change entry without 'rev'")
                revs.append(entry["rev"])
            else:
                revs.append(entry)
        return revs

    @field_validator("document_snapshot", mode="before")
    @classmethod
    def keep_document_as_json(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v, separators=(",", ":"))

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ChangeEvent":
        """Build an event from a decoded row; type mismatches raise DecodeError."""
        try:
            return cls.model_validate(row)
        except ValidationError as exc:
            raise DecodeError(
                f"malformed change row: {exc.error_count()} invalid field(s)",
                context={"errors": exc.errors(include_url=False)},
            ) from exc

    @classmethod
    def from_json(cls, raw: bytes) -> "ChangeEvent":
        return cls.from_row(decode_json_object(raw))

    def load_document(self) -> Optional[Dict[str, Any]]:
        """The snapshot decoded into a dict, or None without include_docs."""
        if self.document_snapshot is None:
            return None
        return json.loads(self.document_snapshot)

    def to_row(self) -> Dict[str, Any]:
        """Re-encode into the wire row shape."""
        row: Dict[str, Any] = {
            "id": self.document_id,
            "seq": self.sequence,
            "changes": [{"rev": rev} for rev in self.revisions],
        }
        if self.deleted:
            row["deleted"] = True
        if self.document_snapshot is not None:
            row["doc"] = self.load_document()
        return row


class DatabaseUpdate(BaseModel):
    """One notification from the server-wide `_db_updates` feed."""

    event_type: StrictStr = Field(default="", alias="type")  # created | updated | deleted
    ok: StrictBool = False
    db_name: StrictStr = ""
    sequence: Optional[StrictSequence] = Field(default=None, alias="seq")

    model_config = {"populate_by_name": True, "frozen": True}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DatabaseUpdate":
        try:
            return cls.model_validate(row)
        except ValidationError as exc:
            raise DecodeError(
                f"malformed db update row: {exc.error_count()} invalid field(s)",
                context={"errors": exc.errors(include_url=False)},
            ) from exc
