"""
StarCraft II replay session.

Opens an .SC2Replay archive with mpyq, picks the s2protocol decoder that
matches the replay's base build and decodes the sections the bank recovery
and tracker analytics need.

Usage:
    with Replay('game.SC2Replay') as rep:
        print(rep.header.version_string, rep.details.title)
"""

import io
import json
import logging
import os
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import mpyq
from s2protocol import versions

from s2events import Event, Struct, get_nested, toon_handle
from tracker_analytics import TrackerEvents, LOOPS_PER_SECOND

log = logging.getLogger(__name__)

# Archive resource names
RES_DETAILS = 'replay.details'
RES_DETAILS_BACKUP = 'replay.details.backup'  # anonymized replays
RES_INIT_DATA = 'replay.initData'
RES_INIT_DATA_BACKUP = 'replay.initData.backup'
RES_ATTRIBUTES_EVENTS = 'replay.attributes.events'
RES_METADATA = 'replay.gamemetadata.json'  # added around 3.7
RES_GAME_EVENTS = 'replay.game.events'
RES_MESSAGE_EVENTS = 'replay.message.events'
RES_TRACKER_EVENTS = 'replay.tracker.events'

# Real-time replays (faster speed) run 1.4 game seconds per real second
SCALED_TIME_FACTOR = 1.4

GAME_SPEEDS = ['Slower', 'Slow', 'Normal', 'Fast', 'Faster']
RESULTS = ['Unknown', 'Victory', 'Defeat', 'Tie']


class ReplayError(Exception):
    """Base class for errors opening a replay."""


class InvalidReplayFile(ReplayError):
    """The input is not a valid SC2Replay file."""


class UnsupportedReplayVersion(ReplayError):
    """Valid SC2Replay file, but no protocol is available to decode it."""


class DecodingFailed(ReplayError):
    """Decoding faulted, most likely on malformed input."""


class ProtocolRegistry:
    """Looks up s2protocol decoder modules by base build."""

    def decode_header(self, contents: bytes) -> dict:
        # The header layout is shared by every protocol version
        return versions.latest().decode_replay_header(contents)

    def build(self, base_build: int):
        try:
            return versions.build(base_build)
        except ImportError:
            return None

    def latest(self):
        try:
            return versions.latest()
        except ImportError:
            return None


def _open_mpq(fp):
    return mpyq.MPQArchive(fp, listfile=False)


class Header(Struct):
    """Replay header: game version and length."""

    @property
    def base_build(self) -> int:
        return self.structv('version').intv('baseBuild')

    @property
    def version(self) -> Tuple[int, int, int, int]:
        v = self.structv('version')
        return (v.intv('major'), v.intv('minor'), v.intv('revision'), v.intv('build'))

    @property
    def version_string(self) -> str:
        return '.'.join(str(n) for n in self.version)

    @property
    def loops(self) -> int:
        return self.intv('elapsedGameLoops')

    @property
    def use_scaled_time(self) -> bool:
        return bool(self.value('useScaledTime'))

    @property
    def duration(self) -> timedelta:
        seconds = self.loops / LOOPS_PER_SECOND
        if self.use_scaled_time:
            seconds /= SCALED_TIME_FACTOR
        return timedelta(seconds=int(seconds))


class Player(Struct):
    """A player entry of the game details."""

    @property
    def name(self) -> str:
        return self.stringv('name')

    @property
    def race(self) -> str:
        return self.stringv('race')

    @property
    def race_letter(self) -> str:
        return self.race[:1] or '?'

    @property
    def team_id(self) -> int:
        return self.intv('teamId')

    @property
    def result(self) -> str:
        r = self.intv('result')
        return RESULTS[r] if 0 <= r < len(RESULTS) else RESULTS[0]

    @property
    def toon(self) -> str:
        return toon_handle(self.value('toon'))


class Details(Struct):
    """Overall game details."""

    @property
    def title(self) -> str:
        return self.stringv('title')

    @property
    def game_speed(self) -> str:
        speed = self.intv('gameSpeed')
        return GAME_SPEEDS[speed] if 0 <= speed < len(GAME_SPEEDS) else f"Unknown({speed})"

    @property
    def players(self) -> List[Player]:
        return [Player(p) for p in self.array('playerList')]


class Slot(Struct):
    """A lobby slot: a player, an observer or an AI."""

    @property
    def user_id(self) -> Optional[int]:
        return self.value('userId')

    @property
    def toon_handle(self) -> str:
        return self.stringv('toonHandle')

    @property
    def observe(self) -> int:
        return self.intv('observe')


class InitData(Struct):
    """Replay init data (the initial lobby)."""

    def _game_description(self) -> Struct:
        return Struct(get_nested(self.fields, 'm_syncLobbyState', 'm_gameDescription'))

    @property
    def slots(self) -> List[Slot]:
        slots = get_nested(self.fields, 'm_syncLobbyState', 'm_lobbyState', 'm_slots') or []
        return [Slot(s) for s in slots]

    @property
    def map_size_x(self) -> int:
        return self._game_description().intv('mapSizeX')

    @property
    def map_size_y(self) -> int:
        return self._game_description().intv('mapSizeY')

    @property
    def max_observers(self) -> int:
        return self._game_description().intv('maxObservers')


def _decode_stream(decode: Callable, contents: bytes, label: str) -> Tuple[List[Event], bool]:
    """Decode an event stream, keeping what was decoded before a fault.

    Returns (events, had_error).
    """
    evts: List[Event] = []
    try:
        for raw in decode(contents):
            evts.append(Event(raw))
    except Exception as e:
        log.warning("Decoding %s stopped after %d events: %s", label, len(evts), e)
        return evts, True
    return evts, False


class Replay:
    """
    A decoded replay.

    Header, details, init data, attributes events and metadata are always
    decoded; game, message and tracker events only when requested. The
    replay takes ownership of the archive and must be closed (or used as
    a context manager).

    Raises InvalidReplayFile, UnsupportedReplayVersion or DecodingFailed.
    """

    def __init__(
        self,
        source,
        game: bool = True,
        message: bool = True,
        tracker: bool = True,
        *,
        protocols: Optional[ProtocolRegistry] = None,
        archive_factory: Optional[Callable] = None,
    ):
        self._archive = None
        self.protocol = None
        self.header: Header = Header()
        self.details: Details = Details()
        self.init_data: InitData = InitData()
        self.attr_evts: Dict[str, Any] = {}
        self.metadata: Optional[dict] = None
        self.game_evts: List[Event] = []
        self.message_evts: List[Event] = []
        self.tracker_evts: Optional[TrackerEvents] = None
        self.game_evts_err = False
        self.message_evts_err = False
        self.tracker_evts_err = False

        self._archive = self._open_archive(source, archive_factory or _open_mpq)

        keep_archive = False
        try:
            self._decode(protocols or ProtocolRegistry(), game, message, tracker)
            keep_archive = True
        except ReplayError:
            raise
        except Exception as e:
            # Input is untrusted and the decoders skip validation
            raise DecodingFailed(f"Failed to decode replay: {e!r}") from e
        finally:
            if not keep_archive:
                self.close()

    @staticmethod
    def _open_archive(source, factory):
        if isinstance(source, (bytes, bytearray)):
            fp = io.BytesIO(source)
        elif hasattr(source, 'read'):
            fp = source
        else:
            try:
                fp = open(os.fspath(source), 'rb')
            except (OSError, TypeError) as e:
                raise InvalidReplayFile(f"Cannot open replay: {e}") from e
        try:
            return factory(fp)
        except Exception as e:
            fp.close()
            raise InvalidReplayFile(f"Not an SC2Replay archive: {e}") from e

    def _read(self, name: str) -> Optional[bytes]:
        return self._archive.read_file(name)

    def _read_with_backup(self, name: str, backup: str) -> bytes:
        data = self._read(name)
        if not data:
            data = self._read(backup)
            if not data:
                raise InvalidReplayFile(f"Missing {name}")
        return data

    def _read_required(self, name: str) -> bytes:
        data = self._read(name)
        if data is None:
            raise InvalidReplayFile(f"Missing {name}")
        return data

    def _decode(self, protocols: ProtocolRegistry, game: bool, message: bool, tracker: bool):
        try:
            contents = self._archive.header['user_data_header']['content']
            self.header = Header(protocols.decode_header(contents))
        except Exception as e:
            raise InvalidReplayFile(f"Cannot decode replay header: {e!r}") from e

        base_build = self.header.base_build
        p = protocols.build(base_build)
        if p is None:
            p = protocols.latest()
            if p is None:
                raise UnsupportedReplayVersion(f"No protocol for base build {base_build}")
            log.warning("No protocol for base build %d, falling back to the latest one", base_build)
        self.protocol = p

        data = self._read_with_backup(RES_DETAILS, RES_DETAILS_BACKUP)
        self.details = Details(p.decode_replay_details(data))

        data = self._read_with_backup(RES_INIT_DATA, RES_INIT_DATA_BACKUP)
        self.init_data = InitData(p.decode_replay_initdata(data))

        data = self._read_required(RES_ATTRIBUTES_EVENTS)
        self.attr_evts = p.decode_replay_attributes_events(data)

        data = self._read(RES_METADATA)
        if data is not None:
            try:
                self.metadata = json.loads(data)
            except ValueError as e:
                raise InvalidReplayFile(f"Invalid {RES_METADATA}: {e}") from e
            if not isinstance(self.metadata, dict):
                raise InvalidReplayFile(f"Invalid {RES_METADATA}: not a JSON object")

        if game:
            data = self._read_required(RES_GAME_EVENTS)
            self.game_evts, self.game_evts_err = _decode_stream(
                p.decode_replay_game_events, data, 'game events')

        if message:
            data = self._read_required(RES_MESSAGE_EVENTS)
            self.message_evts, self.message_evts_err = _decode_stream(
                p.decode_replay_message_events, data, 'message events')

        tracker_evts: List[Event] = []
        if tracker and hasattr(p, 'decode_replay_tracker_events'):
            data = self._read_required(RES_TRACKER_EVENTS)
            tracker_evts, self.tracker_evts_err = _decode_stream(
                p.decode_replay_tracker_events, data, 'tracker events')
        self.tracker_evts = TrackerEvents(tracker_evts, self.init_data)

    def close(self):
        """Release the archive. Safe to call more than once."""
        archive, self._archive = self._archive, None
        if archive is not None:
            archive.file.close()

    @property
    def closed(self) -> bool:
        return self._archive is None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
