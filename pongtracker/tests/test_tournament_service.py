"""
Tests for the tournament service: atomic creation, reconciled saves, retries,
conservation of totals, leaderboards and statistics.
"""
from __future__ import annotations

import pytest

from pongtracker.exceptions import ConcurrencyConflict, ConstraintViolation, NotFoundError
from pongtracker.models import ChangeAction, GameStats, TournamentStyle
from pongtracker.persistence.db import get_connection, init_db, set_db_path
from pongtracker.persistence.repositories import GameRepository, PlayerRepository, TournamentRepository
from pongtracker.services.notifications import ChangeNotifier, tournament_topic
from pongtracker.services.tournament_service import TournamentService


@pytest.fixture
def db_conn(tmp_path):
    """Temporary DB with schema."""
    db_path = tmp_path / "tournament_test.db"
    set_db_path(db_path)
    init_db(db_path=db_path)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def service(notifier):
    return TournamentService(notifier=notifier)


@pytest.fixture
def players(db_conn, service):
    return [service.register_player(db_conn, name) for name in ("Ann", "Ben", "Cat")]


@pytest.fixture
def tournament(db_conn, service, players):
    return service.create_tournament(db_conn, "Friday Cups", [p.id for p in players])


def _record(db_conn, player_id):
    return PlayerRepository().get_record(db_conn, player_id)


# ---------- Players ----------


def test_register_player_starts_with_zero_record(db_conn, service):
    p = service.register_player(db_conn, "  Dee ")
    assert p.name == "Dee"
    stored = service.get_player(db_conn, p.id)
    assert stored.record.to_dict() == {
        "points": 0, "games_played": 0, "games_won": 0,
        "bombs": 0, "bouncers": 0, "airballs": 0, "islands": 0,
    }


def test_register_player_rejects_blank_name(db_conn, service):
    with pytest.raises(ConstraintViolation):
        service.register_player(db_conn, "   ")


def test_rename_and_delete_player(db_conn, service):
    p = service.register_player(db_conn, "Eve")
    assert service.rename_player(db_conn, p.id, "Evie").name == "Evie"
    service.delete_player(db_conn, p.id)
    with pytest.raises(NotFoundError):
        service.get_player(db_conn, p.id)
    with pytest.raises(NotFoundError):
        service.delete_player(db_conn, p.id)


def test_player_with_games_cannot_be_deleted(db_conn, service, players, tournament):
    with pytest.raises(ConstraintViolation):
        service.delete_player(db_conn, players[0].id)
    assert service.get_player(db_conn, players[0].id) is not None


# ---------- Tournament creation ----------


def test_create_tournament_persists_schedule(db_conn, service, players, tournament):
    t, games = tournament
    assert t.tournament_style == TournamentStyle.ROUND_ROBIN
    assert t.player_ids == [p.id for p in players]
    stored = service.list_games(db_conn, t.id)
    assert len(stored) == 3
    assert [g.game_number for g in stored] == [1, 2, 3]
    assert {g.round for g in stored} == {1, 2, 3}
    assert all(g.tournament_id == t.id and g.id for g in stored)
    assert [g.id for g in stored] == [g.id for g in games]


def test_single_elimination_tag_is_stored(db_conn, service, players):
    t, games = service.create_tournament(
        db_conn, "Knockout", [p.id for p in players], tournament_style="single-elimination"
    )
    assert service.get_tournament(db_conn, t.id).tournament_style == "single-elimination"
    assert len(games) == 3


def test_create_tournament_rejects_bad_rosters(db_conn, service, players):
    with pytest.raises(ConstraintViolation):
        service.create_tournament(db_conn, "Solo", [players[0].id])
    with pytest.raises(ConstraintViolation):
        service.create_tournament(db_conn, "Dupes", [players[0].id, players[0].id])
    with pytest.raises(ConstraintViolation):
        service.create_tournament(db_conn, "Odd", [p.id for p in players], tournament_style="swiss")


def test_create_tournament_is_atomic_on_unknown_player(db_conn, service, players):
    with pytest.raises(NotFoundError):
        service.create_tournament(db_conn, "Ghosts", [players[0].id, "missing"])
    assert TournamentRepository().list_all(db_conn) == []
    assert GameRepository().list_all(db_conn) == []


def test_create_tournament_rolls_back_when_games_fail(db_conn, service, players, monkeypatch):
    def fail(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(service._game_repo, "create_many", fail)
    with pytest.raises(RuntimeError):
        service.create_tournament(db_conn, "Broken", [p.id for p in players])
    assert TournamentRepository().list_all(db_conn) == []


def test_list_tournaments_newest_first(db_conn, service, players):
    ids = [p.id for p in players]
    first, _ = service.create_tournament(db_conn, "First", ids)
    second, _ = service.create_tournament(db_conn, "Second", ids)
    assert [t.id for t in service.list_tournaments(db_conn)] == [second.id, first.id]


# ---------- Saving games ----------


def test_first_decision_updates_both_records(db_conn, service, tournament):
    _, games = tournament
    g = games[0]
    saved = service.save_game(db_conn, g.id, winner=g.player1_id)
    assert saved.winner == g.player1_id
    assert (saved.score1, saved.score2) == (1, 0)
    r1, r2 = _record(db_conn, g.player1_id), _record(db_conn, g.player2_id)
    assert (r1.games_played, r1.games_won, r1.points) == (1, 1, 10)
    assert (r2.games_played, r2.games_won, r2.points) == (1, 0, 0)


def test_resave_same_state_is_idempotent(db_conn, service, tournament):
    _, games = tournament
    g = games[0]
    stats = {"bombs": 1, "bouncers": 0, "airballs": 2, "islands": 0}
    service.save_game(db_conn, g.id, winner=g.player2_id, stats_player1=stats)
    before = _record(db_conn, g.player1_id).to_dict()
    service.save_game(db_conn, g.id, winner=g.player2_id, stats_player1=stats)
    service.save_game(db_conn, g.id, winner=g.player2_id, stats_player1=stats)
    assert _record(db_conn, g.player1_id).to_dict() == before


def test_bombs_resave_adds_difference(db_conn, service, tournament):
    _, games = tournament
    g = games[0]
    service.save_game(db_conn, g.id, winner=g.player1_id, stats_player1=GameStats(bombs=2))
    assert _record(db_conn, g.player1_id).bombs == 2
    service.save_game(db_conn, g.id, winner=g.player1_id, stats_player1=GameStats(bombs=5))
    assert _record(db_conn, g.player1_id).bombs == 5
    assert _record(db_conn, g.player1_id).points == 10


def test_winner_change_moves_credit(db_conn, service, tournament):
    _, games = tournament
    g = games[0]
    a, b = g.player1_id, g.player2_id
    service.save_game(db_conn, g.id, winner=a)
    saved = service.save_game(db_conn, g.id, winner=b)
    assert (saved.score1, saved.score2) == (0, 1)
    ra, rb = _record(db_conn, a), _record(db_conn, b)
    assert (ra.games_played, ra.games_won, ra.points) == (1, 0, 0)
    assert (rb.games_played, rb.games_won, rb.points) == (1, 1, 10)


def test_clearing_winner_is_rejected_without_changes(db_conn, service, tournament):
    _, games = tournament
    g = games[0]
    service.save_game(db_conn, g.id, winner=g.player1_id)
    before = (_record(db_conn, g.player1_id), service.get_game(db_conn, g.id))
    with pytest.raises(ConstraintViolation):
        service.save_game(db_conn, g.id, winner=None, stats_player1=GameStats(bombs=9))
    assert _record(db_conn, g.player1_id) == before[0]
    assert service.get_game(db_conn, g.id) == before[1]


def test_winner_must_be_participant(db_conn, service, players, tournament):
    _, games = tournament
    g = games[0]
    outsider = next(p.id for p in players if p.id not in g.participants)
    with pytest.raises(ConstraintViolation):
        service.save_game(db_conn, g.id, winner=outsider)


def test_unknown_game(db_conn, service):
    with pytest.raises(NotFoundError):
        service.save_game(db_conn, "nope", winner=None)


def test_conflict_is_retried_from_fresh_reads(db_conn, service, tournament):
    """A concurrent save lands between read and apply; the retry reconciles against it."""
    _, games = tournament
    g = games[0]
    original = service._reconcile
    calls = {"n": 0}

    def racing_reconcile(previous, submitted, r1, r2):
        calls["n"] += 1
        if calls["n"] == 1:
            # Another client decides the same game first
            other = TournamentService(notifier=ChangeNotifier())
            other.save_game(db_conn, g.id, winner=g.player2_id)
        return original(previous, submitted, r1, r2)

    service._reconcile = racing_reconcile
    saved = service.save_game(db_conn, g.id, winner=g.player1_id)
    assert calls["n"] == 2  # conflicting attempt, then the retry
    assert saved.winner == g.player1_id
    r1, r2 = _record(db_conn, g.player1_id), _record(db_conn, g.player2_id)
    assert (r1.games_played, r1.games_won, r1.points) == (1, 1, 10)
    assert (r2.games_played, r2.games_won, r2.points) == (1, 0, 0)
    assert service.audit_records(db_conn) == []


def test_conflict_gives_up_after_max_attempts(db_conn, notifier, tournament, monkeypatch):
    service = TournamentService(notifier=notifier, max_attempts=2)
    _, games = tournament
    g = games[0]
    attempts = {"n": 0}

    def always_conflict(conn, delta):
        attempts["n"] += 1
        raise ConcurrencyConflict("record moved")

    monkeypatch.setattr(service._player_repo, "apply_delta", always_conflict)
    with pytest.raises(ConcurrencyConflict):
        service.save_game(db_conn, g.id, winner=g.player1_id)
    assert attempts["n"] == 2
    # Game row update was rolled back with the failed record update
    assert service.get_game(db_conn, g.id).winner is None


def test_record_conflict_from_other_game_is_retried(db_conn, service, tournament, monkeypatch):
    """Another game of the same player is decided between read and apply."""
    _, games = tournament
    g = games[0]
    shared = g.player1_id
    other_game = next(o for o in games if o.id != g.id and shared in o.participants)
    original = service._reconcile
    seen_previous = []

    def racing_reconcile(previous, submitted, r1, r2):
        seen_previous.append((previous.winner, previous.version))
        if len(seen_previous) == 1:
            TournamentService(notifier=ChangeNotifier()).save_game(
                db_conn, other_game.id, winner=shared
            )
        return original(previous, submitted, r1, r2)

    real_apply = service._player_repo.apply_delta
    conflicts = []

    def spying_apply(conn, delta):
        try:
            real_apply(conn, delta)
        except ConcurrencyConflict:
            conflicts.append((delta.player_id, conn.in_transaction))
            raise

    service._reconcile = racing_reconcile
    monkeypatch.setattr(service._player_repo, "apply_delta", spying_apply)
    saved = service.save_game(db_conn, g.id, winner=g.player2_id)

    assert conflicts == [(shared, True)]
    # The game update from the failed attempt was rolled back
    assert seen_previous == [(None, 0), (None, 0)]
    assert saved.winner == g.player2_id
    assert saved.version == 1
    r = _record(db_conn, shared)
    assert (r.games_played, r.games_won, r.points) == (2, 1, 10)
    assert service.audit_records(db_conn) == []


def test_stat_dependent_scoring_keeps_records_consistent(db_conn, notifier, tournament):
    service = TournamentService(
        notifier=notifier, scoring=lambda game, winner: 10 + game.stats_for(winner).bombs
    )
    _, games = tournament
    g = games[0]
    a, b = g.player1_id, g.player2_id
    service.save_game(db_conn, g.id, winner=a)
    service.save_game(db_conn, g.id, winner=a, stats_player1=GameStats(bombs=5))
    assert _record(db_conn, a).points == 15
    service.save_game(db_conn, g.id, winner=b)
    assert _record(db_conn, a).points == 0
    assert _record(db_conn, b).points == 10
    assert service.audit_records(db_conn) == []


def test_stale_game_version_conflicts(db_conn, service, tournament):
    _, games = tournament
    g = games[0]
    service.save_game(db_conn, g.id, winner=g.player1_id)
    with pytest.raises(ConcurrencyConflict):
        GameRepository().update_result(db_conn, g, expected_version=g.version)


def test_conservation_over_full_tournament(db_conn, service):
    ids = [service.register_player(db_conn, f"P{i}").id for i in range(5)]
    _, games = service.create_tournament(db_conn, "Big", ids)
    for i, g in enumerate(games):
        winner = g.player1_id if i % 2 == 0 else g.player2_id
        service.save_game(
            db_conn, g.id, winner=winner,
            stats_player1={"bombs": i % 3, "bouncers": 1, "airballs": 0, "islands": i % 2},
            stats_player2={"bombs": 0, "bouncers": 0, "airballs": 1, "islands": 0},
        )
    # Correct a few results
    for g in games[:3]:
        current = service.get_game(db_conn, g.id)
        service.save_game(db_conn, g.id, winner=current.loser())
    records = [_record(db_conn, pid) for pid in ids]
    decided = len(games)
    assert sum(r.games_won for r in records) == decided
    assert sum(r.games_played for r in records) == 2 * decided
    assert sum(r.points for r in records) == 10 * decided
    assert service.audit_records(db_conn) == []


def test_audit_detects_tampered_record(db_conn, service, tournament):
    _, games = tournament
    g = games[0]
    service.save_game(db_conn, g.id, winner=g.player1_id)
    db_conn.execute("UPDATE players SET points = points + 5 WHERE id = ?", (g.player1_id,))
    mismatches = service.audit_records(db_conn)
    assert [m.player_id for m in mismatches] == [g.player1_id]
    assert mismatches[0].stored["points"] == 15
    assert mismatches[0].derived["points"] == 10


# ---------- Notifications ----------


def test_save_publishes_after_commit(db_conn, service, notifier, tournament):
    t, games = tournament
    g = games[0]
    game_events, tournament_events, player_events = [], [], []
    notifier.subscribe("games", game_events.append)
    notifier.subscribe(tournament_topic(t.id), tournament_events.append)
    notifier.subscribe("players", player_events.append)

    committed_winners = []

    def check_committed(event):
        # Committed state is visible to a separate connection
        other = get_connection()
        try:
            committed_winners.append(GameRepository().get(other, event.entity_id).winner)
        finally:
            other.close()

    notifier.subscribe("games", check_committed)
    service.save_game(db_conn, g.id, winner=g.player1_id)
    assert [e.entity_id for e in game_events] == [g.id]
    assert committed_winners == [g.player1_id]
    assert game_events[0].action is ChangeAction.UPDATE
    assert game_events[0].payload["transition"] == "decided"
    assert len(tournament_events) == 1
    assert {e.entity_id for e in player_events} == {g.player1_id, g.player2_id}


def test_rejected_save_publishes_nothing(db_conn, service, notifier, tournament):
    _, games = tournament
    g = games[0]
    seen = []
    notifier.subscribe("games", seen.append)
    with pytest.raises(ConstraintViolation):
        service.save_game(db_conn, g.id, winner="stranger")
    assert seen == []


# ---------- Standings ----------


def test_leaderboard_from_decided_games(db_conn, service, players, tournament):
    t, games = tournament
    assert service.leaderboard(db_conn, t.id) == []
    ann = players[0].id
    ann_games = [g for g in games if ann in g.participants]
    for g in ann_games:
        service.save_game(
            db_conn, g.id, winner=ann,
            stats_player1={"bombs": 1} if g.player1_id == ann else None,
            stats_player2={"bombs": 1} if g.player2_id == ann else None,
        )
    board = service.leaderboard(db_conn, t.id)
    assert board[0].player_id == ann
    assert (board[0].wins, board[0].losses, board[0].games_played) == (2, 0, 2)
    assert board[0].win_percentage == 100.0
    assert board[0].total_bombs == 2
    assert {e.player_id for e in board} == {p.id for p in players}
    assert all(e.wins == 0 and e.losses == 1 for e in board[1:])


def test_leaderboard_unknown_tournament(db_conn, service):
    with pytest.raises(NotFoundError):
        service.leaderboard(db_conn, "missing")


def test_player_statistics_badges(db_conn, service, players, tournament):
    _, games = tournament
    ann, ben, cat = (p.id for p in players)
    g = next(g for g in games if set(g.participants) == {ann, ben})
    stats_ann = {"bombs": 3, "bouncers": 0, "airballs": 0, "islands": 1}
    stats_ben = {"bombs": 0, "bouncers": 2, "airballs": 0, "islands": 0}
    service.save_game(
        db_conn, g.id, winner=ann,
        stats_player1=stats_ann if g.player1_id == ann else stats_ben,
        stats_player2=stats_ben if g.player1_id == ann else stats_ann,
    )
    stats = service.player_statistics(db_conn)
    by_id = {s.player.id: s for s in stats}
    assert stats[0].player.id == ann
    assert "Leader" in by_id[ann].badges
    assert "Bomb Commander" in by_id[ann].badges
    assert "Island King" in by_id[ann].badges
    assert by_id[ben].badges == ["Bounce Master"]
    # No airballs recorded: badge not awarded
    assert all("Fresh Air Specialist" not in s.badges for s in stats)
    assert by_id[ann].win_ratio == 100.0
    assert by_id[cat].win_ratio == 0.0
