"""
Data models passed between the matcher and the crawlers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class NormalizedText:
    """Canonicalized view of one evaluated string."""
    language_code: str
    plain_text: str
    tokens: List[str] = field(default_factory=list)
    stems: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one item. `explanation` is for humans only."""
    is_match: bool
    explanation: str
    score: float = 0.0


@dataclass
class ForumItem:
    """A forum thread or comment, held only while it is matched and emitted."""
    url: str
    title: str = ''
    description: str = ''
    body: str = ''
    thread_title: Optional[str] = None
    thread_url: Optional[str] = None
    id: Optional[Any] = None
    timestamp: Optional[datetime] = None
    why: Optional[str] = None

    @property
    def match_text(self) -> str:
        """Text a thread is matched on: title plus description."""
        return f"{self.title} {self.description}".strip()

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly payload for event emission."""
        data: Dict[str, Any] = {'url': self.url}
        if self.thread_url is None:
            data['title'] = self.title
            data['description'] = self.description
        else:
            data['body'] = self.body
            data['threadTitle'] = self.thread_title
            data['threadUrl'] = self.thread_url
        if self.id is not None:
            data['id'] = self.id
        if self.timestamp is not None:
            data['timestamp'] = self.timestamp.isoformat()
        if self.why is not None:
            data['why'] = self.why
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForumItem':
        """Build an item from an emitted payload (camelCase or snake_case keys)."""
        url = data.get('url')
        if not url:
            raise ValueError("Forum item requires a url")
        return cls(
            url=url,
            title=data.get('title') or '',
            description=data.get('description') or '',
            body=data.get('body') or '',
            thread_title=data.get('thread_title', data.get('threadTitle')),
            thread_url=data.get('thread_url', data.get('threadUrl')),
            id=data.get('id'),
            timestamp=parse_timestamp(data.get('timestamp')),
        )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Timezone-aware datetime from an ISO-8601 string, epoch number or datetime.

    Epoch values above 1e11 are taken as milliseconds. Naive values are UTC.
    Unparseable input gives None.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
