"""Unit tests for the deterministic rules."""

import random

import pytest

from agents.game_master import AI_NAMES, game_master
from models.errors import InvalidPhaseError, ValidationError
from models.game import Phase, PlayerState


def _roster(votes):
    """Humans H0..Hn with the given votes plus the AI player 'ai'."""
    players = [
        PlayerState(id=f"h{i}", game_id="g1", name=f"H{i}", vote=v)
        for i, v in enumerate(votes)
    ]
    players.append(PlayerState(id="ai", game_id="g1", name="Mike_777", is_ai=True))
    return players


def _count(result, player_id):
    return next(vc.votes for vc in result.vote_results if vc.player.id == player_id)


# ── Tally ──────────────────────────────────────────────────────────────────────

def test_majority_on_ai_means_humans_win():
    # [A, A, B, skip] → aiVotes=2, totalVotes=3
    result = game_master.tally_votes(_roster(["ai", "ai", "h0", ""]), "ai")
    assert result.ai_wins is False
    assert _count(result, "ai") == 2
    assert _count(result, "h0") == 1
    assert result.ai_player.id == "ai"


def test_single_vote_on_ai_catches_it():
    result = game_master.tally_votes(_roster(["ai"]), "ai")
    assert result.ai_wins is False


def test_no_votes_ai_wins():
    result = game_master.tally_votes(_roster(["", "", "", ""]), "ai")
    assert result.ai_wins is True


def test_nobody_voted_at_all_ai_wins():
    result = game_master.tally_votes(_roster([None, None, None, None]), "ai")
    assert result.ai_wins is True


def test_exactly_half_is_a_human_win():
    # aiVotes=2, totalVotes=4 → 2 < 2 is false
    result = game_master.tally_votes(_roster(["ai", "ai", "h0", "h1"]), "ai")
    assert result.ai_wins is False


def test_strict_minority_ai_wins():
    result = game_master.tally_votes(_roster(["ai", "h0", "h0", "h1", "h2"]), "ai")
    assert result.ai_wins is True
    assert _count(result, "h0") == 2


def test_ai_own_vote_field_is_ignored():
    players = _roster(["h1", "h1", "h0", "h0"])
    players[-1] = players[-1].model_copy(update={"vote": "h0"})
    result = game_master.tally_votes(players, "ai")
    assert _count(result, "h0") == 2


def test_results_list_every_player_most_votes_first():
    result = game_master.tally_votes(_roster(["h2", "ai", "h2", None]), "ai")
    ids = [vc.player.id for vc in result.vote_results]
    assert ids == ["h2", "ai", "h0", "h1", "h3"]
    assert [vc.votes for vc in result.vote_results] == [2, 1, 0, 0, 0]


def test_tally_requires_ai_in_roster():
    with pytest.raises(ValueError):
        game_master.tally_votes(_roster(["h0"]), "missing")


def test_quorum_needs_a_named_target_from_every_human():
    assert game_master.all_humans_voted(_roster(["ai", "h1", "h0", "h1"]))
    assert not game_master.all_humans_voted(_roster(["ai", "ai", None, "h1"]))
    # an abstention leaves the quorum open
    assert not game_master.all_humans_voted(_roster(["ai", "", "h0", "h1"]))


# ── Phases ─────────────────────────────────────────────────────────────────────

def test_phase_order_is_forward_only():
    assert game_master.next_phase(Phase.LOBBY) == Phase.DISCUSSION
    assert game_master.next_phase(Phase.DISCUSSION) == Phase.VOTING
    assert game_master.next_phase(Phase.VOTING) == Phase.ENDED
    with pytest.raises(InvalidPhaseError):
        game_master.next_phase(Phase.ENDED)


@pytest.mark.parametrize("current,target", [
    (Phase.DISCUSSION, Phase.LOBBY),
    (Phase.LOBBY, Phase.VOTING),
    (Phase.ENDED, Phase.DISCUSSION),
    (Phase.VOTING, Phase.VOTING),
])
def test_illegal_transitions_rejected(current, target):
    with pytest.raises(InvalidPhaseError):
        game_master.check_transition(current, target)


# ── Validation ─────────────────────────────────────────────────────────────────

def test_name_is_stripped_and_bounded():
    assert game_master.validate_name("  Ann ") == "Ann"
    with pytest.raises(ValidationError):
        game_master.validate_name("   ")
    with pytest.raises(ValidationError):
        game_master.validate_name("x" * 51)
    assert game_master.validate_name("x" * 50) == "x" * 50


def test_room_code_normalized_upper():
    assert game_master.validate_room_code("ab12cd") == "AB12CD"
    for bad in ["", "abc", "TOO-LONG", "has space", "123456789"]:
        with pytest.raises(ValidationError):
            game_master.validate_room_code(bad)


def test_vote_target_must_be_in_room():
    players = _roster([None])
    assert game_master.validate_vote_target("", players) == ""
    assert game_master.validate_vote_target("ai", players) == "ai"
    with pytest.raises(ValidationError):
        game_master.validate_vote_target("stranger", players)


def test_ai_name_drawn_from_pool_with_injected_rng():
    a = [game_master.pick_ai_name(random.Random(11)) for _ in range(3)]
    b = [game_master.pick_ai_name(random.Random(11)) for _ in range(3)]
    assert a == b
    assert set(a) <= set(AI_NAMES)
