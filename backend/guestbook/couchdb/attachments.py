"""
Guestbook Backend: Document Attachments
========================================

What:  Attachment record plus the header parsing shared by GET and HEAD.
How:   CouchDB reports the MIME type in Content-Type and the body's MD5 as
       base64 in Content-MD5 (22-24 characters, with or without padding).
"""

import base64
import binascii
from typing import Optional

import httpx
from pydantic import BaseModel, Field

from guestbook.couchdb.errors import DecodeError


class Attachment(BaseModel):
    """A named binary blob attached to a document."""

    name: str = Field(description="Attachment file name")
    content_type: str = Field(default="application/octet-stream", description="MIME type")
    md5: Optional[bytes] = Field(default=None, description="MD5 digest of the body")
    body: Optional[bytes] = Field(default=None, description="Body; None for metadata-only reads")


def attachment_from_headers(name: str, response: httpx.Response) -> Attachment:
    md5: Optional[bytes] = None
    header = response.headers.get("content-md5", "")
    if header:
        if not 22 <= len(header) <= 24:
            raise DecodeError(
                f"Content-MD5 header has invalid size {len(header)}",
                context={"header": header},
            )
        padded = header + "=" * (-len(header) % 4)
        try:
            md5 = base64.b64decode(padded, validate=True)
        except binascii.Error as exc:
            raise DecodeError(
                f"invalid base64 in Content-MD5 header: {exc}",
                context={"header": header},
            ) from exc
    return Attachment(
        name=name,
        content_type=response.headers.get("content-type", "application/octet-stream"),
        md5=md5,
    )
