#!/usr/bin/env python3
"""
SC2 Bank Recover
Recovers the banks (.SC2Bank save files) of every player from a StarCraft II replay.

Usage: python sc2bankrecover.py <replay_file.SC2Replay>
"""

import argparse
import logging
import os
import sys

from bank import InvalidBankEvent, banks_from_replay
from sc2replay import InvalidReplayFile, Replay, ReplayError, UnsupportedReplayVersion


def print_summary(rep: Replay):
    print(f"Version:        {rep.header.version_string}")
    print(f"Loops:          {rep.header.loops}")
    print(f"Length:         {rep.header.duration}")
    print(f"Map:            {rep.details.title}")
    print(f"Speed:          {rep.details.game_speed}")
    print(f"Game events:    {len(rep.game_evts)}")
    print(f"Message events: {len(rep.message_evts)}")
    print(f"Tracker events: {len(rep.tracker_evts.evts)}")

    print("Players:")
    for p in rep.details.players:
        line = (f"\tName: {p.name:<20}, Race: {p.race_letter}, Team: {p.team_id + 1}, "
                f"Result: {p.result}, Toon: {p.toon}")
        pd = rep.tracker_evts.player_desc_by_toon(p.toon)
        if pd is not None:
            if pd.start_dir is not None:
                line += f", Start: {pd.start_dir} o'clock"
            if pd.sq is not None:
                line += f", SQ: {pd.sq}, Supply-capped: {pd.supply_capped_percent}%"
        print(line)

    observers = [s for s in rep.init_data.slots if s.observe]
    print(f"Observers:      {len(observers)} (max {rep.init_data.max_observers})")
    for s in observers:
        print(f"\tToon: {s.toon_handle}")


def save_banks(rep: Replay, output_dir: str, quiet: bool = False) -> int:
    """Save every recovered bank under output_dir. Returns the number of files written.

    A bank that cannot be rendered is reported and skipped; the others are
    still saved.
    """
    saved = 0
    for player_banks in banks_from_replay(rep):
        for bank in player_banks.values():
            path = os.path.join(output_dir, bank.relative_path)
            try:
                bank.save_as_file(path)
            except InvalidBankEvent as e:
                if not quiet:
                    print(f"Skip file: {path}: {e}")
                continue
            saved += 1
            if not quiet:
                print(f"Save file: {path}")
    return saved


def main(argv=None):
    arg_parser = argparse.ArgumentParser(
        description='Recover player banks from StarCraft II replay files (.SC2Replay)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python sc2bankrecover.py game.SC2Replay
  python sc2bankrecover.py --filename game.SC2Replay --output-dir banks

Banks are written to <output-dir>/<slot index>__<toon handle>/<bank name>.SC2Bank
        """
    )
    arg_parser.add_argument('replay', nargs='?', help='Path to .SC2Replay file')
    arg_parser.add_argument('--filename', help='Path to .SC2Replay file (same as the positional argument)')
    arg_parser.add_argument('--output-dir', '-o', default='.',
                            help='Directory to write banks to (default: current directory)')
    arg_parser.add_argument('--quiet', '-q', action='store_true',
                            help='Suppress console output')
    arg_parser.add_argument('--verbose', '-v', action='store_true',
                            help='Log dropped bank events and decoding details')

    args = arg_parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else (logging.ERROR if args.quiet else logging.WARNING)
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')

    filename = args.filename or args.replay
    if not filename:
        arg_parser.print_usage()
        return 1

    try:
        rep = Replay(filename)
    except InvalidReplayFile as e:
        print(f"Failed to open file: not a valid replay: {e}")
        return 1
    except UnsupportedReplayVersion as e:
        print(f"Failed to open file: unsupported replay version: {e}")
        return 1
    except ReplayError as e:
        print(f"Failed to open file: {e}")
        return 1

    with rep:
        if not args.quiet:
            print_summary(rep)
            print("Begin")
        saved = save_banks(rep, args.output_dir, quiet=args.quiet)
        if not args.quiet:
            print(f"End ({saved} banks)")
    return 0


if __name__ == '__main__':
    sys.exit(main())
