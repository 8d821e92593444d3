"""
Field accessors for events and structures decoded by s2protocol.

s2protocol hands back plain dicts keyed by ``m_<name>`` with a few
bookkeeping keys (``_event``, ``_gameloop``, ``_userid``). These helpers
give typed, forgiving access to those dicts.
"""

from typing import Any, Dict, List, Optional


def to_str(value: Any) -> str:
    """Decode an s2protocol blob (bytes) to text; None becomes ''."""
    if value is None:
        return ''
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8', errors='replace')
    return str(value)


def short_type_name(event_name: str) -> str:
    """
    Strip namespace and decoration from an s2protocol event name.

    'NNet.Game.SBankFileEvent' -> 'BankFile'
    'NNet.Replay.Tracker.SPlayerStatsEvent' -> 'PlayerStats'
    """
    name = (event_name or '').rsplit('.', 1)[-1]
    if name.startswith('S') and len(name) > 1 and name[1].isupper():
        name = name[1:]
    if name.endswith('Event'):
        name = name[:-len('Event')]
    return name


def get_nested(obj: Any, *path) -> Any:
    """Walk a path of field names through nested dicts; None if any step is missing."""
    current = obj
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def toon_handle(toon: Optional[dict]) -> str:
    """Format a details m_toon structure as 'region-S2-realm-id' ('' when id is 0)."""
    if not toon or not toon.get('m_id'):
        return ''
    program = to_str(toon.get('m_programId')).rstrip('\x00')
    return f"{toon.get('m_region', 0)}-{program}-{toon.get('m_realm', 0)}-{toon['m_id']}"


class Struct:
    """Read-only view over a decoded structure, accessed by bare field name."""

    def __init__(self, fields: Optional[Dict[str, Any]] = None):
        self.fields: Dict[str, Any] = fields or {}

    def value(self, name: str) -> Any:
        """Raw field value, or None when absent."""
        return self.fields.get('m_' + name)

    def has(self, name: str) -> bool:
        return self.value(name) is not None

    def intv(self, name: str) -> int:
        v = self.value(name)
        if v is None:
            return 0
        return int(v)

    def stringv(self, name: str) -> str:
        return to_str(self.value(name))

    def array(self, name: str) -> List[Any]:
        v = self.value(name)
        if v is None:
            return []
        return list(v)

    def structv(self, name: str) -> 'Struct':
        v = self.value(name)
        return Struct(v if isinstance(v, dict) else {})

    def __repr__(self):
        return f"{type(self).__name__}({self.fields!r})"


class Event(Struct):
    """A single decoded event of a game, message or tracker stream."""

    @property
    def name(self) -> str:
        """Full protocol type name, e.g. 'NNet.Game.SBankKeyEvent'."""
        return self.fields.get('_event', '')

    @property
    def type_name(self) -> str:
        """Short protocol type tag, e.g. 'BankKey'."""
        return short_type_name(self.name)

    @property
    def loop(self) -> int:
        return self.fields.get('_gameloop', 0)

    @property
    def user_id(self) -> Optional[int]:
        """Originating user id; None for streams that carry no user (tracker)."""
        user = self.fields.get('_userid')
        if isinstance(user, dict):
            return user.get('m_userId')
        return user

    def __repr__(self):
        return f"Event({self.type_name}@{self.loop})"
