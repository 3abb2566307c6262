"""
Event records and the prefecture reference table.

Events are read as a snapshot; nothing in the sync writes them back.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

Coordinates = tuple[float, float]

# Prefectural office locations as (lat, lng), in JIS prefecture-code order.
PREFECTURE_COORDINATES: dict[str, Coordinates] = {
    "北海道": (43.0642, 141.3469),
    "青森県": (40.8244, 140.7400),
    "岩手県": (39.7036, 141.1527),
    "宮城県": (38.2688, 140.8721),
    "秋田県": (39.7186, 140.1024),
    "山形県": (38.2404, 140.3633),
    "福島県": (37.7503, 140.4676),
    "茨城県": (36.3418, 140.4468),
    "栃木県": (36.5657, 139.8836),
    "群馬県": (36.3911, 139.0608),
    "埼玉県": (35.8569, 139.6489),
    "千葉県": (35.6047, 140.1233),
    "東京都": (35.6895, 139.6917),
    "神奈川県": (35.4478, 139.6425),
    "新潟県": (37.9026, 139.0236),
    "富山県": (36.6953, 137.2113),
    "石川県": (36.5947, 136.6256),
    "福井県": (36.0652, 136.2216),
    "山梨県": (35.6642, 138.5684),
    "長野県": (36.6513, 138.1810),
    "岐阜県": (35.3912, 136.7223),
    "静岡県": (34.9769, 138.3831),
    "愛知県": (35.1802, 136.9066),
    "三重県": (34.7303, 136.5086),
    "滋賀県": (35.0045, 135.8686),
    "京都府": (35.0214, 135.7556),
    "大阪府": (34.6863, 135.5200),
    "兵庫県": (34.6913, 135.1830),
    "奈良県": (34.6851, 135.8329),
    "和歌山県": (34.2261, 135.1675),
    "鳥取県": (35.5039, 134.2377),
    "島根県": (35.4723, 133.0505),
    "岡山県": (34.6618, 133.9344),
    "広島県": (34.3966, 132.4596),
    "山口県": (34.1859, 131.4714),
    "徳島県": (34.0658, 134.5593),
    "香川県": (34.3401, 134.0434),
    "愛媛県": (33.8417, 132.7657),
    "高知県": (33.5597, 133.5311),
    "福岡県": (33.6064, 130.4181),
    "佐賀県": (33.2494, 130.2988),
    "長崎県": (32.7448, 129.8737),
    "熊本県": (32.7898, 130.7417),
    "大分県": (33.2382, 131.6126),
    "宮崎県": (31.9111, 131.4239),
    "鹿児島県": (31.5602, 130.5581),
    "沖縄県": (26.2124, 127.6809),
}


def is_known_prefecture(name: str) -> bool:
    """Check whether a name is one of the 47 prefectures."""
    return name in PREFECTURE_COORDINATES


def parse_coordinates(value: Any) -> Optional[Coordinates]:
    """
    Parse event-supplied coordinates.
    
    Accepts ``"lat,lng"`` text or a two-element sequence. Anything else,
    including empty values and non-finite numbers, yields None so the
    caller can fall back to the prefecture table.
    
    Examples:
        "35.68, 139.76" -> (35.68, 139.76)
        [35.68, 139.76] -> (35.68, 139.76)
        "" -> None
        "35.68" -> None
    """
    if value is None:
        return None
    
    if isinstance(value, str):
        if not value.strip():
            return None
        parts = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        return None
    
    if len(parts) != 2:
        return None
    
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except (TypeError, ValueError):
        return None
    
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    
    return lat, lng


def format_number(value: float) -> str:
    """Format a coordinate component without a trailing ``.0``."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def coordinate_text(value: Any) -> Optional[tuple[str, str]]:
    """
    Coordinates as the event stored them, trimmed.
    
    ``"35.680, 139.700"`` keeps its digits as ``("35.680", "139.700")``;
    numeric components are formatted with ``format_number``. None when
    ``parse_coordinates`` rejects the value.
    """
    if parse_coordinates(value) is None:
        return None
    
    parts = value.split(",") if isinstance(value, str) else value
    lat, lng = (
        part.strip() if isinstance(part, str) else format_number(part)
        for part in parts
    )
    return lat, lng


def parse_flag(value: Any) -> bool:
    """
    Read a boolean column that may have been exported as text.
    
    Raises:
        ValueError: If a string is not ``true``/``false`` (any case).
    """
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1"):
            return True
        if text in ("false", "0", ""):
            return False
        raise ValueError(f"Not a boolean: {value!r}")
    return bool(value)


def parse_event_date(value: Union[str, date, datetime]) -> datetime:
    """
    Normalize an event date to an aware datetime.
    
    Naive values are taken to be UTC, which is how the event table stores
    its timestamps.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    
    if not isinstance(value, datetime):
        raise ValueError(f"Unsupported event date: {value!r}")
    
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    
    return value


@dataclass
class EventRecord:
    """One event as read from the persistence layer."""
    
    id: Any
    name: str
    prefecture: str
    date: datetime
    website: Optional[str] = None
    description: Optional[str] = None
    youtube_playlist: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    is_archived: bool = False
    # Trimmed stored text of ``coordinates``, rendered as-is.
    coordinates_text: Optional[tuple[str, str]] = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError(f"Event {self.id!r} has an empty name")

        self.date = parse_event_date(self.date)
        self.is_archived = parse_flag(self.is_archived)

        if not is_known_prefecture(self.prefecture):
            logger.debug("Event %r has unknown prefecture %r", self.id, self.prefecture)

        if self.coordinates is not None:
            parsed = parse_coordinates(self.coordinates)
            if parsed is None:
                logger.debug(
                    "Ignoring unparsable coordinates %r for event %r",
                    self.coordinates, self.id,
                )
            self.coordinates_text = coordinate_text(self.coordinates)
            self.coordinates = parsed
    
    @classmethod
    def from_dict(cls, data: dict) -> "EventRecord":
        """
        Create an EventRecord from an exported row.
        
        Both the camelCase keys of the JSON export and snake_case keys
        are accepted.
        """
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default
        
        return cls(
            id=pick("id"),
            name=pick("name", default=""),
            prefecture=pick("prefecture", default=""),
            date=pick("date"),
            website=pick("website"),
            description=pick("description"),
            youtube_playlist=pick("youtubePlaylist", "youtube_playlist"),
            coordinates=pick("coordinates"),
            is_archived=pick("isArchived", "is_archived", default=False),
        )


def load_events(path: Path) -> list[EventRecord]:
    """
    Load an event snapshot from a JSON export file.
    
    Args:
        path: File holding a JSON array of event rows.
        
    Returns:
        EventRecords in file order.
        
    Raises:
        ValueError: If the file is not a JSON array of valid events.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of events")
    
    return [EventRecord.from_dict(row) for row in data]
