"""
Event list to Markdown renderer.

Produces the canonical all-events document mirrored to GitHub:
- Header block (title and optional generation time)
- One section per non-archived event, newest first
- Sections separated by horizontal rules

The ``## `` heading of each section is part of the document format:
the change detector reads section keys back out of it.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from .models import PREFECTURE_COORDINATES, Coordinates, EventRecord, format_number

HEADING_PREFIX = "## "
SECTION_SEPARATOR = "---"
NOT_SET_MARKER = "未設定"

WEEKDAYS_JA = ("月", "火", "水", "木", "金", "土", "日")

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_LINE_BREAK = re.compile(r"\s*\n\s*")


class FirstParagraphScope(Enum):
    """Which events keep the line breaks of their first description paragraph."""
    FIRST_EVENT = "first_event"
    EVERY_EVENT = "every_event"


@dataclass
class RenderOptions:
    """Knobs for document rendering."""
    
    title: str = "スクラムフェスマップ"
    include_generated_at: bool = True
    newest_first: bool = True
    first_paragraph_scope: FirstParagraphScope = FirstParagraphScope.FIRST_EVENT
    timezone: tzinfo = field(default_factory=lambda: ZoneInfo("Asia/Tokyo"))
    prefecture_coordinates: Mapping[str, Coordinates] = field(
        default_factory=lambda: PREFECTURE_COORDINATES
    )


def format_date_ja(value: datetime) -> str:
    """Format a date as ``2024年03月01日(金)``."""
    return f"{value.year:04d}年{value.month:02d}月{value.day:02d}日({WEEKDAYS_JA[value.weekday()]})"


class MarkdownRenderer:
    """
    Renders event records to the all-events Markdown document.
    
    Rendering is pure: the only input besides the events is the clock,
    which is read once per render for the header's generation time.
    """
    
    def __init__(
        self,
        options: Optional[RenderOptions] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize renderer.
        
        Args:
            options: Rendering options; defaults apply if omitted.
            clock: Returns the current instant. Defaults to UTC now.
        """
        self.options = options or RenderOptions()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
    
    def render(self, events: Iterable[EventRecord], now: Optional[datetime] = None) -> str:
        """
        Render events to Markdown.
        
        Args:
            events: Event snapshot in persistence order.
            now: Generation instant for the header; read from the clock if omitted.
            
        Returns:
            The complete document text.
        """
        visible = [event for event in events if not event.is_archived]
        ordered = sorted(
            visible,
            key=lambda event: event.date,
            reverse=self.options.newest_first,
        )
        
        parts = [self._render_header(now or self.clock())]
        for index, event in enumerate(ordered):
            keep_breaks = (
                index == 0
                or self.options.first_paragraph_scope is FirstParagraphScope.EVERY_EVENT
            )
            parts.append(self._render_event(event, keep_breaks))
        
        return "".join(parts)
    
    # =========================================================================
    # Blocks
    # =========================================================================
    
    def _render_header(self, now: datetime) -> str:
        lines = [f"# {self.options.title}", ""]
        
        if self.options.include_generated_at:
            local = now.astimezone(self.options.timezone)
            lines.append(
                f"作成日時: {local.year:04d}年{local.month:02d}月{local.day:02d}日 "
                f"{local.hour:02d}:{local.minute:02d}"
            )
            lines.append("")
        
        lines.append(SECTION_SEPARATOR)
        lines.append("")
        lines.append("")
        return "\n".join(lines)
    
    def _render_event(self, event: EventRecord, keep_first_paragraph_breaks: bool) -> str:
        markdown = f"{HEADING_PREFIX}{event.name}\n\n"
        markdown += f"- 開催地: {event.prefecture}\n"
        markdown += f"- 座標: {self._format_coordinates(event)}\n"
        
        local_date = event.date.astimezone(self.options.timezone)
        markdown += f"- 開催日: {format_date_ja(local_date)}\n\n"
        
        if event.description:
            markdown += self._format_description(
                event.description, keep_first_paragraph_breaks
            ) + "\n"
        
        if event.website:
            markdown += f"\n- Webサイト: {event.website}\n"
        
        if event.youtube_playlist and event.youtube_playlist.strip():
            markdown += f"- 録画一覧: {event.youtube_playlist}\n"
        
        markdown += f"\n{SECTION_SEPARATOR}\n\n"
        return markdown
    
    def _format_coordinates(self, event: EventRecord) -> str:
        """
        Coordinates in Leaflet ``[lng, lat]`` order.
        
        Event-supplied coordinates win over the prefecture table. With
        neither available the explicit not-set marker is used.
        """
        if event.coordinates_text is not None:
            lat, lng = event.coordinates_text
            return f"`[{lng}, {lat}]` (Leaflet形式)"

        coordinates = event.coordinates
        if coordinates is None:
            coordinates = self.options.prefecture_coordinates.get(event.prefecture)

        if coordinates is None:
            return NOT_SET_MARKER

        lat, lng = coordinates
        return f"`[{format_number(lng)}, {format_number(lat)}]` (Leaflet形式)"
    
    def _format_description(self, description: str, keep_first_paragraph_breaks: bool) -> str:
        """
        Reflow a free-text description.
        
        Paragraphs containing a bullet sub-list are kept verbatim. The
        first paragraph keeps its line breaks as Markdown hard breaks when
        ``keep_first_paragraph_breaks`` is set; every other paragraph is
        joined into one line.
        """
        paragraphs = _PARAGRAPH_BREAK.split(description.strip())
        
        formatted = []
        for index, paragraph in enumerate(paragraphs):
            if "\n- " in paragraph:
                formatted.append(paragraph)
            elif index == 0 and keep_first_paragraph_breaks:
                lines = [line.strip() for line in paragraph.split("\n")]
                formatted.append("  \n".join(line for line in lines if line))
            else:
                formatted.append(_LINE_BREAK.sub(" ", paragraph).strip())
        
        return "\n\n".join(formatted)
