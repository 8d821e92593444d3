"""
Player analytics derived from tracker events.
Start locations, start directions, spending quotient and supply-capped time.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

log = logging.getLogger(__name__)

# Game loops per game second
LOOPS_PER_SECOND = 16

# Tracker event type tags
EVT_PLAYER_SETUP = 'PlayerSetup'
EVT_UNIT_BORN = 'UnitBorn'
EVT_PLAYER_STATS = 'PlayerStats'

# Town halls every player starts with
MAIN_BUILDINGS = frozenset({'Nexus', 'CommandCenter', 'Hatchery'})

# One clock hour as an angle
ONE_HOUR = math.pi / 6


def is_main_building(unit_type_name: str) -> bool:
    """Tells if the unit type name is a main building (Nexus, Command Center or Hatchery)."""
    return unit_type_name in MAIN_BUILDINGS


def angle_to_clock(angle: float) -> int:
    """
    Convert an angle in radians to an hour clock value in the range 1..12.

    Examples:
        pi/2 -> 12 (o'clock)
        0    -> 3
        pi   -> 9
    """
    # Shift by 3:30 (12 o'clock starts at 11:30) and turn clockwise
    angle = -angle + ONE_HOUR * 3.5

    while angle < 0:
        angle += ONE_HOUR * 12
    while angle >= ONE_HOUR * 12:
        angle -= ONE_HOUR * 12

    # 0..11 where 0 means 12
    hour = int(angle / ONE_HOUR)
    if hour == 0:
        return 12
    return hour


def calc_sq(unspent_resources: int, income: int) -> int:
    """
    Calculate the SQ (Spending Quotient).

    SQ = 35 * (0.00137 * I - ln(U)) + 240

    U is the average unspent resources (minerals + vespene current),
    I is the average income (minerals + vespene collection rate).
    Source: "Do you macro like a pro?" on teamliquid.net.
    """
    # ln(0) is undefined; a player sitting on nothing is treated as 1 unspent
    unspent_resources = max(unspent_resources, 1)
    return int(35 * (0.00137 * income - math.log(unspent_resources)) + 240 + 0.5)


@dataclass
class PlayerDesc:
    """Descriptor of a player computed from tracker events."""
    player_id: int
    slot_id: Optional[int]  # None for players without a lobby slot (AI)
    user_id: Optional[int]
    start_loc_x: int = 0
    start_loc_y: int = 0
    start_dir: Optional[int] = None  # clock value 1..12
    sq: Optional[int] = None
    supply_capped_percent: Optional[int] = None


@dataclass
class _Stats:
    samples: int = 0
    unspents: int = 0
    incomes: int = 0
    sup_capped: int = 0


class TrackerEvents:
    """Tracker events plus the player descriptors calculated from them."""

    def __init__(self, evts: List, init_data):
        self.evts = evts
        self.pid_player_desc: Dict[int, PlayerDesc] = {}
        self.toon_player_desc: Dict[str, PlayerDesc] = {}
        self._init(init_data)

    def _init(self, init_data):
        pid_stats: Dict[int, _Stats] = {}

        # Player setup happens on loop 0
        for e in self.evts:
            if e.loop > 0:
                break
            if e.type_name != EVT_PLAYER_SETUP:
                continue
            pid = e.intv('playerId')
            if pid not in self.pid_player_desc:
                self.pid_player_desc[pid] = PlayerDesc(
                    player_id=pid, slot_id=e.value('slotId'), user_id=e.value('userId'))
                pid_stats[pid] = _Stats()

        cx = init_data.map_size_x // 2
        cy = init_data.map_size_y // 2

        for e in self.evts:
            if e.loop == 0 and e.type_name == EVT_UNIT_BORN:
                if is_main_building(e.stringv('unitTypeName')):
                    pd = self.pid_player_desc.get(e.intv('controlPlayerId'))
                    if pd is not None:
                        pd.start_loc_x = e.intv('x')
                        pd.start_loc_y = e.intv('y')
                        pd.start_dir = angle_to_clock(
                            math.atan2(pd.start_loc_y - cy, pd.start_loc_x - cx))

            if e.type_name == EVT_PLAYER_STATS:
                st = pid_stats.get(e.intv('playerId'))
                if st is None:
                    continue
                ss = e.structv('stats')
                st.samples += 1
                st.unspents += ss.intv('scoreValueMineralsCurrent') + ss.intv('scoreValueVespeneCurrent')
                st.incomes += (ss.intv('scoreValueMineralsCollectionRate')
                               + ss.intv('scoreValueVespeneCollectionRate'))
                if ss.intv('scoreValueFoodUsed') >= ss.intv('scoreValueFoodMade'):
                    st.sup_capped += 1

        for pid, pd in self.pid_player_desc.items():
            st = pid_stats[pid]
            if st.samples == 0:
                continue
            pd.sq = calc_sq(st.unspents // st.samples, st.incomes // st.samples)
            pd.supply_capped_percent = st.sup_capped * 100 // st.samples

        slots = init_data.slots
        for pd in self.pid_player_desc.values():
            if pd.slot_id is None or not 0 <= pd.slot_id < len(slots):
                log.debug("Player %s refers to unknown slot %s", pd.player_id, pd.slot_id)
                continue
            self.toon_player_desc[slots[pd.slot_id].toon_handle] = pd

    def player_desc(self, player_id: int) -> Optional[PlayerDesc]:
        return self.pid_player_desc.get(player_id)

    def player_desc_by_toon(self, toon: str) -> Optional[PlayerDesc]:
        return self.toon_player_desc.get(toon)
