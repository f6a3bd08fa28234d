"""
Summarizer capability surface.

A Summarizer turns a transcript into a finite, non-restartable stream of
SummaryUpdate events. Every event carries the cumulative best-known value of
each field; a field may be empty until the model gets to it. The stream may
raise mid-way, which aborts the attempt.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Protocol

from ..errors import SummaryError

__all__ = ["Summarizer", "SummaryUpdate", "SummaryError"]


@dataclass(frozen=True)
class SummaryUpdate:
    title: str = ""
    body: str = ""
    action_items: tuple[str, ...] = field(default_factory=tuple)
    key_points: tuple[str, ...] = field(default_factory=tuple)

    def merge(self, newer: "SummaryUpdate") -> "SummaryUpdate":
        """Latest non-empty value of every field wins."""
        return SummaryUpdate(
            title=newer.title or self.title,
            body=newer.body or self.body,
            action_items=tuple(newer.action_items) or self.action_items,
            key_points=tuple(newer.key_points) or self.key_points,
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.title and self.body and self.action_items and self.key_points)

    @property
    def missing(self) -> list[str]:
        return [
            name
            for name, value in (
                ("title", self.title),
                ("summary", self.body),
                ("action items", self.action_items),
                ("key points", self.key_points),
            )
            if not value
        ]


class Summarizer(Protocol):
    def summarize(self, transcript: str) -> Iterator[SummaryUpdate]: ...
