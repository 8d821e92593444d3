"""Synthetic replay data and stand-ins for mpyq/s2protocol used by the tests."""

from s2events import Event

BASE_BUILD = 80949

HEADER = {
    'm_version': {
        'm_major': 5, 'm_minor': 0, 'm_revision': 2, 'm_build': 81102,
        'm_baseBuild': BASE_BUILD, 'm_flags': 1,
    },
    'm_elapsedGameLoops': 16 * 125,
    'm_useScaledTime': False,
}

DETAILS = {
    'm_title': b'Bank Test Map',
    'm_gameSpeed': 4,
    'm_playerList': [
        {
            'm_name': b'Alice', 'm_race': b'Protoss', 'm_teamId': 0, 'm_result': 1,
            'm_toon': {'m_region': 2, 'm_programId': b'S2\x00\x00', 'm_realm': 1, 'm_id': 111},
        },
        {
            'm_name': b'Bob', 'm_race': b'Zerg', 'm_teamId': 1, 'm_result': 2,
            'm_toon': {'m_region': 2, 'm_programId': b'S2\x00\x00', 'm_realm': 1, 'm_id': 222},
        },
    ],
}

INIT_DATA = {
    'm_syncLobbyState': {
        'm_gameDescription': {'m_mapSizeX': 50, 'm_mapSizeY': 50, 'm_maxObservers': 2},
        'm_lobbyState': {
            'm_slots': [
                {'m_userId': 0, 'm_toonHandle': b'2-S2-1-111', 'm_observe': 0, 'm_control': 2},
                {'m_userId': 1, 'm_toonHandle': b'2-S2-1-222', 'm_observe': 0, 'm_control': 2},
                {'m_userId': 2, 'm_toonHandle': b'2-S2-1-333', 'm_observe': 1, 'm_control': 2},
            ],
        },
    },
}


def raw_event(event_name, loop=0, user=None, /, **fields):
    """Build an event dict the way s2protocol decodes it."""
    raw = {'_event': event_name, '_gameloop': loop}
    if user is not None:
        raw['_userid'] = {'m_userId': user}
    for key, value in fields.items():
        raw['m_' + key] = value
    return raw


def game_event(short_name, loop=0, user=0, /, **fields):
    return Event(raw_event(f'NNet.Game.S{short_name}Event', loop, user, **fields))


def tracker_event(short_name, loop=0, /, **fields):
    return Event(raw_event(f'NNet.Replay.Tracker.S{short_name}Event', loop, **fields))


def stats_event(player_id, loop, unspent=0, income=0, food_used=0, food_made=0):
    return tracker_event('PlayerStats', loop, playerId=player_id, stats={
        'm_scoreValueMineralsCurrent': unspent,
        'm_scoreValueVespeneCurrent': 0,
        'm_scoreValueMineralsCollectionRate': income,
        'm_scoreValueVespeneCollectionRate': 0,
        'm_scoreValueFoodUsed': food_used,
        'm_scoreValueFoodMade': food_made,
    })


REPLAY_FILES = {
    'replay.details': b'details',
    'replay.initData': b'initdata',
    'replay.attributes.events': b'attributes',
    'replay.game.events': b'game',
    'replay.message.events': b'message',
    'replay.tracker.events': b'tracker',
}


class FakeArchive:
    """Looks like mpyq.MPQArchive: header, file and read_file()."""

    def __init__(self, fp, files, header_content=b'header'):
        self.file = fp
        self.files = files
        self.header = {'user_data_header': {'content': header_content}}

    def read_file(self, name):
        return self.files.get(name)


class LegacyProtocol:
    """A protocol module from before tracker events existed."""

    def __init__(self, details=None, init_data=None, game_events=None, message_events=None,
                 game_fault_after=None):
        self.details = DETAILS if details is None else details
        self.init_data = INIT_DATA if init_data is None else init_data
        self.game_events = game_events or []
        self.message_events = message_events or []
        self.game_fault_after = game_fault_after

    def decode_replay_details(self, contents):
        return self.details

    def decode_replay_initdata(self, contents):
        return self.init_data

    def decode_replay_attributes_events(self, contents):
        return {'source': 0, 'mapNamespace': 999, 'scopes': {}}

    def decode_replay_game_events(self, contents):
        for i, e in enumerate(self.game_events):
            if self.game_fault_after is not None and i >= self.game_fault_after:
                raise IndexError('bit buffer exhausted')
            yield e

    def decode_replay_message_events(self, contents):
        yield from self.message_events


class FakeProtocol(LegacyProtocol):

    def __init__(self, tracker_events=None, **kwargs):
        super().__init__(**kwargs)
        self.tracker_events = tracker_events or []

    def decode_replay_tracker_events(self, contents):
        yield from self.tracker_events


class FakeRegistry:
    """Stands in for ProtocolRegistry."""

    def __init__(self, protocols=None, latest=None, header=None):
        self.protocols = protocols or {}
        self._latest = latest
        self.header = HEADER if header is None else header

    def decode_header(self, contents):
        if not isinstance(self.header, dict):
            raise self.header
        return self.header

    def build(self, base_build):
        return self.protocols.get(base_build)

    def latest(self):
        return self._latest


def archive_factory(files=None, opened=None):
    """Factory for FakeArchive; appends each created archive to 'opened'."""
    files = REPLAY_FILES if files is None else files

    def factory(fp):
        archive = FakeArchive(fp, files)
        if opened is not None:
            opened.append(archive)
        return archive
    return factory
