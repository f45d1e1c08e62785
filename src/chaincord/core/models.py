"""Data models for chaincord."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal

import discord

Role = Literal["user", "assistant"]


@dataclass(slots=True)
class MsgNode:
    """One Discord message's contribution to a conversation.

    Uses __slots__ for memory efficiency since many instances are created.
    An empty ``text`` means the message has not been processed yet. Every
    field is mutated only while ``lock`` is held.
    """

    text: str = ""
    images: list[dict[str, Any]] = field(default_factory=list)
    audio_files: list[dict[str, Any]] = field(default_factory=list)
    pdf_files: list[dict[str, Any]] = field(default_factory=list)
    generated_images: list[dict[str, Any]] = field(default_factory=list)

    role: Role = "assistant"
    user_id: str | None = None

    # The parent is referenced by id. parent_msg is only a resolved handle
    # for the current process and is never persisted.
    parent_id: int | None = None
    parent_msg: discord.Message | None = None
    parent_resolved: bool = False

    has_bad_attachments: bool = False
    fetch_parent_failed: bool = False

    web_search_performed: bool = False
    search_result_count: int = 0
    grounding_metadata: dict[str, Any] | None = None

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def has_visible_content(self) -> bool:
        """Whether the node contributes anything the model can read."""
        return bool(self.text or self.images or self.audio_files)

    def set_parent(self, parent_msg: discord.Message | None) -> None:
        """Record the resolved parent message (or its absence)."""
        self.parent_msg = parent_msg
        self.parent_id = parent_msg.id if parent_msg is not None else None
        self.parent_resolved = True

    def to_record(self) -> dict[str, Any]:
        """Return the persisted fields as a JSON-serialisable mapping."""
        return {
            "text": self.text,
            "images": list(self.images),
            "audio_files": list(self.audio_files),
            "pdf_files": list(self.pdf_files),
            "generated_images": list(self.generated_images),
            "role": self.role,
            "user_id": self.user_id,
            "parent_id": self.parent_id,
            "parent_resolved": self.parent_resolved,
            "has_bad_attachments": self.has_bad_attachments,
            "fetch_parent_failed": self.fetch_parent_failed,
            "web_search_performed": self.web_search_performed,
            "search_result_count": self.search_result_count,
            "grounding_metadata": self.grounding_metadata,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "MsgNode":
        """Rebuild a node from :meth:`to_record` output."""
        role = record.get("role")
        parent_id = record.get("parent_id")
        return cls(
            text=str(record.get("text") or ""),
            images=list(record.get("images") or []),
            audio_files=list(record.get("audio_files") or []),
            pdf_files=list(record.get("pdf_files") or []),
            generated_images=list(record.get("generated_images") or []),
            role="user" if role == "user" else "assistant",
            user_id=record.get("user_id"),
            parent_id=int(parent_id) if parent_id is not None else None,
            parent_resolved=bool(record.get("parent_resolved", parent_id is not None)),
            has_bad_attachments=bool(record.get("has_bad_attachments")),
            fetch_parent_failed=bool(record.get("fetch_parent_failed")),
            web_search_performed=bool(record.get("web_search_performed")),
            search_result_count=int(record.get("search_result_count") or 0),
            grounding_metadata=record.get("grounding_metadata"),
        )

    def snapshot(self) -> "MsgNode":
        """Copy the data fields into a detached node with its own lock.

        Take the snapshot while holding ``lock`` and write it to durable
        storage after releasing the lock.
        """
        copied = MsgNode.from_record(self.to_record())
        copied.parent_msg = self.parent_msg
        return copied
