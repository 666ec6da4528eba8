"""Multimodal content resolution.

Stored message text carries attachments inline as tags:

- placeholders that need an attachment lookup::

      <image:GUID>
      <file:GUID:report.pdf>

- already-embedded payloads that need nothing else::

      <image-base64:image/png;base64,iVBOR...>
      <file-base64:report.pdf:application/pdf;base64,JVBER...>

``MultimodalContentResolver.resolve`` turns such text into an ordered list of
content parts. Unresolvable attachments become short notices instead of
failing the request; malformed embedded tags are kept verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING

from relay.models import AttachmentStatus, FilePart, ImagePart, TextPart

if TYPE_CHECKING:
    from relay.interfaces import AttachmentStore
    from relay.models import Attachment, ContentPart

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER_RE = re.compile(r"<image:([0-9a-fA-F-]{36})>")
FILE_PLACEHOLDER_RE = re.compile(r"<file:([0-9a-fA-F-]{36}):([^>]*)>")
EMBEDDED_RE = re.compile(
    r"<(image|file)-base64:(?:([^:;>]*?):)?([^;>]*?);base64,([^>]*?)>",
    re.IGNORECASE | re.DOTALL,
)


@dataclass(frozen=True)
class _Match:
    start: int
    end: int
    #: Resolved part, or None to keep the raw tag as text.
    part: ContentPart | None


def _embedded_matches(text: str) -> list[_Match]:
    matches: list[_Match] = []
    for m in EMBEDDED_RE.finditer(text):
        kind = m.group(1).lower()
        file_name = (m.group(2) or "").strip() or None
        mime_type = (m.group(3) or "").strip()
        data = (m.group(4) or "").strip()

        part: ContentPart | None = None
        if not data or "/" not in mime_type:
            logger.debug("Keeping malformed %s tag verbatim", kind)
        elif kind == "image":
            part = ImagePart(mime_type=mime_type, base64=data, file_name=file_name)
        elif file_name:
            part = FilePart(mime_type=mime_type, base64=data, file_name=file_name)
        else:
            logger.debug("Keeping file tag without a file name verbatim")
        matches.append(_Match(m.start(), m.end(), part))
    return matches


def _assemble(text: str, matches: list[_Match]) -> list[ContentPart]:
    """Slice *text* around sorted matches and merge adjacent verbatim text."""
    if not matches:
        return [TextPart(text)] if text else []

    parts: list[ContentPart] = []
    pending: list[str] = []

    def flush() -> None:
        merged = "".join(pending).strip()
        pending.clear()
        if merged:
            parts.append(TextPart(merged))

    cursor = 0
    for match in sorted(matches, key=lambda m: m.start):
        if match.start < cursor:
            continue
        pending.append(text[cursor : match.start])
        if match.part is None:
            pending.append(text[match.start : match.end])
        else:
            flush()
            parts.append(match.part)
        cursor = match.end
    pending.append(text[cursor:])
    flush()
    return parts


def parse_embedded(text: str) -> list[ContentPart]:
    """Parse embedded base64 tags only; no attachment lookups."""
    return _assemble(text, _embedded_matches(text))


class MultimodalContentResolver:
    """Resolve placeholder and embedded attachment tags into content parts."""

    def __init__(self, store: AttachmentStore | None = None) -> None:
        self._store = store

    async def resolve(self, text: str) -> list[ContentPart]:
        if not text:
            return []
        matches = _embedded_matches(text)
        for m in IMAGE_PLACEHOLDER_RE.finditer(text):
            part = await self._resolve_placeholder(m.group(1), None, is_image=True)
            matches.append(_Match(m.start(), m.end(), part))
        for m in FILE_PLACEHOLDER_RE.finditer(text):
            part = await self._resolve_placeholder(m.group(1), m.group(2), is_image=False)
            matches.append(_Match(m.start(), m.end(), part))
        return _assemble(text, matches)

    async def _resolve_placeholder(
        self, attachment_id: str, file_name: str | None, *, is_image: bool
    ) -> ContentPart:
        kind = "Image" if is_image else "File"
        attachment: Attachment | None = None
        if self._store is not None:
            try:
                attachment = await self._store.get_by_id(attachment_id)
            except Exception:
                logger.warning(
                    "Attachment lookup failed for %s", attachment_id, exc_info=True
                )
                return TextPart(f"[{kind} attachment {file_name or attachment_id} has an unknown status]")

        if attachment is None:
            logger.warning("Attachment %s not found", attachment_id)
            label = attachment_id if is_image else (file_name or attachment_id)
            return TextPart(f"[{kind} attachment {label} not found or not ready]")

        label = file_name or attachment.file_name or attachment_id
        status = _coerce_status(attachment.status)
        if status in (AttachmentStatus.PENDING, AttachmentStatus.PROCESSING):
            return TextPart(f"[{kind} attachment {label} is still processing]")
        if status is AttachmentStatus.FAILED:
            if is_image:
                return TextPart("[Image could not be processed]")
            return TextPart(f"[File {label} could not be processed]")
        if status is not AttachmentStatus.READY:
            logger.warning(
                "Attachment %s has unknown status %r", attachment_id, attachment.status
            )
            return TextPart(f"[{kind} attachment {label} has an unknown status]")

        payload: str | None = None
        if attachment.cache_key:
            try:
                payload = await self._store.get_cached_base64(attachment.cache_key)  # type: ignore[union-attr]
            except Exception:
                logger.warning(
                    "Cache read failed for attachment %s", attachment_id, exc_info=True
                )
        if not payload:
            logger.warning("Attachment %s payload missing from cache", attachment_id)
            return TextPart(f"[{kind} attachment {label} is unavailable, it may have expired]")

        if is_image:
            return ImagePart(
                mime_type=attachment.content_type,
                base64=payload,
                file_name=attachment.file_name or None,
            )
        return FilePart(
            mime_type=attachment.content_type, base64=payload, file_name=label
        )


def _coerce_status(status: AttachmentStatus | str) -> AttachmentStatus | None:
    if isinstance(status, AttachmentStatus):
        return status
    try:
        return AttachmentStatus(str(status).lower())
    except ValueError:
        return None
