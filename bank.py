"""
Bank recovery.

Banks are per-player save files a map loads at game start. Their content
is replayed as game events on loop 0, interleaved across all players:

    BankFile -> BankSection -> BankKey -> BankValue ... -> BankSignature

banks_from_replay() groups those events back into one Bank per lobby slot
and bank name; Bank.to_xml() renders a Bank as an .SC2Bank document.
"""

import logging
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

log = logging.getLogger(__name__)

# Game event type tags regarding banks
EVT_BANK_FILE = 'BankFile'
EVT_BANK_SECTION = 'BankSection'
EVT_BANK_KEY = 'BankKey'
EVT_BANK_VALUE = 'BankValue'
EVT_BANK_SIGNATURE = 'BankSignature'

BANK_CONTENT_EVENTS = frozenset({EVT_BANK_SECTION, EVT_BANK_KEY, EVT_BANK_VALUE, EVT_BANK_SIGNATURE})
BANK_EVENTS = BANK_CONTENT_EVENTS | {EVT_BANK_FILE}

# A value of this type carries no payload; the next bank event holds it
DEFERRED_VALUE_TYPE = 7

BANK_FILE_EXTENSION = '.SC2Bank'
XML_INDENT = '  '
VALUE_ELEMENT = 'Value'


class InvalidBankEvent(ValueError):
    """Raised for events that do not belong where they were given."""


class BankValueKind(Enum):
    """Value types of bank keys: wire code and attribute name."""
    FIXED = (0, 'fixed')
    FLAG = (1, 'flag')
    INT = (2, 'int')
    STRING = (3, 'string')
    POINT = (4, 'point')
    UNIT = (5, 'unit')
    TEXT = (6, 'text')

    def __init__(self, code: int, label: str):
        self.code = code
        self.label = label

    @classmethod
    def from_code(cls, code: int) -> 'BankValueKind':
        for kind in cls:
            if kind.code == code:
                return kind
        raise InvalidBankEvent(f"Unknown bank value type: {code}")


@dataclass(frozen=True)
class SectionNode:
    name: str


@dataclass(frozen=True)
class KeyNode:
    name: str


@dataclass(frozen=True)
class ValueNode:
    name: str
    kind: BankValueKind
    data: str
    deferred: bool = False  # payload came from the following event


@dataclass(frozen=True)
class SignatureNode:
    signature: Tuple[int, ...]

    @property
    def hex(self) -> str:
        return ''.join(f'{b:02X}' for b in self.signature)


BankNode = Union[SectionNode, KeyNode, ValueNode, SignatureNode]


class Bank:
    """A bank of a player: its BankFile event followed by its content events."""

    def __init__(self, replay, evt_bank_file, slot_index: int, slot, player=None):
        if evt_bank_file.type_name != EVT_BANK_FILE:
            raise InvalidBankEvent(f"Bank must start with {EVT_BANK_FILE}, got {evt_bank_file.type_name}")
        self.replay = replay
        self.name: str = evt_bank_file.stringv('name')
        self.slot_index = slot_index
        self.slot = slot  # owner lobby slot
        self.player = player  # owner details player, None for unmatched toons
        self.game_events: List = [evt_bank_file]

    def __repr__(self):
        return f"Bank({self.name!r}, slot={self.slot_index}, events={len(self.game_events)})"

    @property
    def toon_handle(self) -> str:
        return self.slot.toon_handle if self.slot is not None else ''

    @property
    def relative_path(self) -> str:
        """'<slot index>__<toon handle>/<bank name>.SC2Bank'"""
        return os.path.join(f"{self.slot_index}__{self.toon_handle}", self.name + BANK_FILE_EXTENSION)

    def add_game_event(self, evt):
        """Append a bank content event; BankFile and non-bank events are rejected."""
        if evt.type_name not in BANK_CONTENT_EVENTS:
            raise InvalidBankEvent(f"Not a bank content event: {evt.type_name}")
        self.game_events.append(evt)

    def nodes(self) -> Iterator[BankNode]:
        """Yield the bank content as typed nodes, in event order."""
        deferred: Optional[str] = None
        for evt in self.game_events[1:]:
            if deferred is not None:
                yield ValueNode(deferred, BankValueKind.from_code(evt.intv('type')),
                                evt.stringv('data'), deferred=True)
                deferred = None
                continue

            t = evt.type_name
            if t == EVT_BANK_SECTION:
                yield SectionNode(evt.stringv('name'))
            elif t == EVT_BANK_KEY:
                yield KeyNode(evt.stringv('name'))
                if evt.has('type'):
                    node = _value_node(evt, VALUE_ELEMENT)
                    if node is None:
                        deferred = VALUE_ELEMENT
                    else:
                        yield node
            elif t == EVT_BANK_VALUE:
                name = evt.stringv('name') or VALUE_ELEMENT
                node = _value_node(evt, name)
                if node is None:
                    deferred = name
                else:
                    yield node
            elif t == EVT_BANK_SIGNATURE:
                yield SignatureNode(tuple(evt.array('signature')))

        if deferred is not None:
            log.debug("Bank %s ends with a deferred value and no payload", self.name)

    def _provenance(self, recovered_at: datetime) -> List[str]:
        rep = self.replay
        return [
            "Bank recovered from a replay",
            str(recovered_at),
            f"Title: {rep.details.title}",
            f"Version: {rep.header.version_string}",
            f"Loops: {rep.header.loops}",
            f"Length: {rep.header.duration}",
            f"Player: {self.toon_handle}",
        ]

    def to_xml(self, recovered_at: Optional[datetime] = None) -> bytes:
        """Render this bank as an .SC2Bank XML document."""
        if recovered_at is None:
            recovered_at = datetime.now()

        root = ET.Element('Bank', version='1')
        for text in self._provenance(recovered_at):
            root.append(ET.Comment(text))

        section = key = None
        for node in self.nodes():
            if isinstance(node, SectionNode):
                section = ET.SubElement(root, 'Section', name=node.name)
                key = None
            elif isinstance(node, KeyNode):
                parent = section if section is not None else root
                key = ET.SubElement(parent, 'Key', name=node.name)
            elif isinstance(node, ValueNode):
                parent = key if key is not None else (section if section is not None else root)
                ET.SubElement(parent, node.name, {node.kind.label: node.data})
            elif isinstance(node, SignatureNode):
                sig = ET.SubElement(root, 'Signature')
                if node.signature:
                    sig.set('value', node.hex)

        ET.indent(root, space=XML_INDENT)
        body = ET.tostring(root, encoding='unicode')
        return ('<?xml version="1.0" encoding="UTF-8"?>\n' + body + '\n').encode('utf-8')

    def write_to(self, fp, recovered_at: Optional[datetime] = None) -> int:
        """Write this bank to a binary file object. Returns the number of bytes written."""
        data = self.to_xml(recovered_at)
        fp.write(data)
        return len(data)

    def save_as_file(self, path: str, recovered_at: Optional[datetime] = None) -> int:
        """Write this bank to 'path', creating missing directories.

        The bank is rendered first, so a bank that fails to render leaves
        nothing on disk.
        """
        data = self.to_xml(recovered_at)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'wb') as f:
            f.write(data)
        return len(data)


def _value_node(evt, name: str) -> Optional[ValueNode]:
    """Value carried by a BankKey/BankValue event, None when it is deferred."""
    code = evt.intv('type')
    if code == DEFERRED_VALUE_TYPE:
        return None
    return ValueNode(name, BankValueKind.from_code(code), evt.stringv('data'))


def banks_from_replay(rep) -> List[Dict[str, Bank]]:
    """
    Return all banks of all lobby slots in a replay.

    ret[slot_index][bank_name] is a Bank. Slots include observers, so the
    list can be longer than the player list.
    """
    slots = rep.init_data.slots
    users_bank: List[Dict[str, Bank]] = [{} for _ in slots]

    player_by_toon = {}
    for player in rep.details.players:
        if player.toon:
            player_by_toon[player.toon] = player

    slot_by_user: Dict[int, int] = {}
    for i, slot in enumerate(slots):
        if slot.toon_handle and slot.user_id is not None:
            slot_by_user[slot.user_id] = i

    current: Dict[int, Bank] = {}  # user id -> bank receiving content
    for evt in rep.game_evts:
        # Banks are only loaded before the game starts
        if evt.loop > 0:
            break
        t = evt.type_name
        if t not in BANK_EVENTS:
            continue

        i = slot_by_user.get(evt.user_id)
        if i is None:
            log.debug("Bank event %s from unknown user %s", t, evt.user_id)
            continue

        if t == EVT_BANK_FILE:
            slot = slots[i]
            bank = Bank(rep, evt, i, slot, player_by_toon.get(slot.toon_handle))
            users_bank[i][bank.name] = bank
            current[evt.user_id] = bank
            continue

        bank = current.get(evt.user_id)
        if bank is None:
            # Usually the map maker's fault
            log.debug("Bank event %s of user %s before any %s", t, evt.user_id, EVT_BANK_FILE)
            continue
        bank.add_game_event(evt)

    return users_bank
