"""Tests for the sc2bankrecover command line."""

import pytest

import sc2bankrecover
from sc2replay import Replay, UnsupportedReplayVersion
from replay_fakes import (
    BASE_BUILD,
    FakeProtocol,
    FakeRegistry,
    archive_factory,
    raw_event,
    stats_event,
)


def bank_events():
    return [
        raw_event('NNet.Game.SBankFileEvent', 0, 0, name=b'Campaign'),
        raw_event('NNet.Game.SBankSectionEvent', 0, 0, name=b'Progress'),
        raw_event('NNet.Game.SBankKeyEvent', 0, 0, name=b'Level', type=2, data=b'7'),
        raw_event('NNet.Game.SBankFileEvent', 0, 1, name=b'Campaign'),
        raw_event('NNet.Game.SBankSignatureEvent', 0, 1, signature=[0xDE, 0xAD], toonHandle=b''),
    ]


def tracker_events():
    return [
        raw_event('NNet.Replay.Tracker.SPlayerSetupEvent', 0, playerId=1, slotId=0, userId=0),
        raw_event('NNet.Replay.Tracker.SUnitBornEvent', 0, controlPlayerId=1,
                  unitTypeName=b'Nexus', x=25, y=45),
        stats_event(1, 160, unspent=100, income=1000).fields,
    ]


def patch_replay(monkeypatch, game_events):
    proto = FakeProtocol(game_events=game_events, tracker_events=tracker_events())

    def open_fake(filename):
        return Replay(b'replay', protocols=FakeRegistry({BASE_BUILD: proto}, latest=proto),
                      archive_factory=archive_factory())

    monkeypatch.setattr(sc2bankrecover, 'Replay', open_fake)


@pytest.fixture
def fake_replay(monkeypatch):
    patch_replay(monkeypatch, bank_events())


class TestMain:
    """Tests for main()."""

    def test_saves_banks(self, fake_replay, tmp_path, capsys):
        """Test that every recovered bank is written per slot."""
        assert sc2bankrecover.main(['game.SC2Replay', '--output-dir', str(tmp_path)]) == 0
        alice = tmp_path / '0__2-S2-1-111' / 'Campaign.SC2Bank'
        bob = tmp_path / '1__2-S2-1-222' / 'Campaign.SC2Bank'
        assert b'<Value int="7" />' in alice.read_bytes()
        assert b'<Signature value="DEAD" />' in bob.read_bytes()
        out = capsys.readouterr().out
        assert 'End (2 banks)' in out

    def test_summary(self, fake_replay, tmp_path, capsys):
        """Test the replay summary and player analytics lines."""
        sc2bankrecover.main(['--filename', 'game.SC2Replay', '-o', str(tmp_path)])
        out = capsys.readouterr().out
        assert 'Version:        5.0.2.81102' in out
        assert 'Map:            Bank Test Map' in out
        assert 'Speed:          Faster' in out
        assert 'Game events:    5' in out
        assert "Name: Alice" in out
        assert "Start: 12 o'clock" in out
        assert 'SQ: 127, Supply-capped: 100%' in out
        assert 'Observers:      1 (max 2)' in out
        assert '\tToon: 2-S2-1-333' in out

    def test_quiet(self, fake_replay, tmp_path, capsys):
        """Test that quiet mode writes banks without output."""
        assert sc2bankrecover.main(['game.SC2Replay', '-o', str(tmp_path), '--quiet']) == 0
        assert capsys.readouterr().out == ''
        assert (tmp_path / '0__2-S2-1-111' / 'Campaign.SC2Bank').exists()

    def test_unrenderable_bank_skipped(self, monkeypatch, tmp_path, capsys):
        """Test that a bank with an unknown value type does not stop the other banks."""
        patch_replay(monkeypatch, [
            raw_event('NNet.Game.SBankFileEvent', 0, 0, name=b'Bad'),
            raw_event('NNet.Game.SBankSectionEvent', 0, 0, name=b's'),
            raw_event('NNet.Game.SBankKeyEvent', 0, 0, name=b'k', type=9, data=b'?'),
            raw_event('NNet.Game.SBankFileEvent', 0, 1, name=b'Good'),
            raw_event('NNet.Game.SBankSectionEvent', 0, 1, name=b's'),
        ])
        assert sc2bankrecover.main(['game.SC2Replay', '-o', str(tmp_path)]) == 0
        assert not (tmp_path / '0__2-S2-1-111').exists()
        assert (tmp_path / '1__2-S2-1-222' / 'Good.SC2Bank').exists()
        out = capsys.readouterr().out
        assert 'Unknown bank value type: 9' in out
        assert 'End (1 banks)' in out

    def test_invalid_replay(self, tmp_path, capsys):
        """Test that a non-replay reports an error and exits with 1."""
        path = tmp_path / 'junk.SC2Replay'
        path.write_bytes(b'junk')
        assert sc2bankrecover.main([str(path)]) == 1
        assert 'not a valid replay' in capsys.readouterr().out

    def test_unsupported_version(self, monkeypatch, capsys):
        """Test the targeted message for unsupported versions."""
        def open_unsupported(filename):
            raise UnsupportedReplayVersion('No protocol for base build 1')

        monkeypatch.setattr(sc2bankrecover, 'Replay', open_unsupported)
        assert sc2bankrecover.main(['old.SC2Replay']) == 1
        assert 'unsupported replay version' in capsys.readouterr().out

    def test_no_filename(self, capsys):
        """Test that a missing filename prints usage."""
        assert sc2bankrecover.main([]) == 1
        assert 'usage' in capsys.readouterr().out
