"""CLI tests."""

from datetime import datetime, timedelta

import pytest
from typer.testing import CliRunner

from teamsync import cli
from teamsync.api.v1.webhooks import mark_event_processed
from teamsync.billing.models import ProcessedWebhookEvent
from teamsync.teams.ledger import MembershipLedger
from teamsync.teams.models import InviteStatus

runner = CliRunner()


@pytest.fixture(autouse=True)
def wired(monkeypatch, database, gateway):
    monkeypatch.setattr(cli, "db", database)
    monkeypatch.setattr(cli, "CircleGateway", lambda: gateway)


def test_dashboard_command(make_team):
    make_team(seat_limit=2)

    result = runner.invoke(cli.app, ["dashboard", "leader@acme.io"])

    assert result.exit_code == 0
    assert "seats 0/2" in result.output


def test_dashboard_command_unknown_leader():
    result = runner.invoke(cli.app, ["dashboard", "nobody@acme.io"])

    assert result.exit_code == 1
    assert "No active teams" in result.output


def test_sync_command(database, gateway, make_team):
    team_id, _ = make_team()
    with database.session() as session:
        ledger = MembershipLedger(session)
        ledger.add_member(ledger.get_team(team_id), "ana@acme.io", InviteStatus.INVITED)
    gateway.add_member("ana@acme.io", confirmed=True)

    result = runner.invoke(cli.app, ["sync", str(team_id)])

    assert result.exit_code == 0
    assert "1 member(s) updated" in result.output


def test_remove_member_command(database, gateway, make_team):
    team_id, _ = make_team()
    with database.session() as session:
        ledger = MembershipLedger(session)
        ledger.add_member(ledger.get_team(team_id), "ana@acme.io", InviteStatus.ACTIVE)

    result = runner.invoke(cli.app, ["remove-member", str(team_id), "ana@acme.io"])

    assert result.exit_code == 0
    with database.session() as session:
        assert MembershipLedger(session).find_seated_member(team_id, "ana@acme.io") is None


def test_remove_member_command_unknown(make_team):
    team_id, _ = make_team()

    result = runner.invoke(cli.app, ["remove-member", str(team_id), "ghost@acme.io"])

    assert result.exit_code == 1


def test_tags_command():
    result = runner.invoke(cli.app, ["tags"])

    assert result.exit_code == 0
    assert "TeamsMember" in result.output


def test_cleanup_events_command(database):
    mark_event_processed(database, "evt_old", "customer.subscription.created", "stripe")
    mark_event_processed(database, "evt_new", "customer.subscription.created", "stripe")
    with database.session() as session:
        old = session.query(ProcessedWebhookEvent).filter_by(event_id="evt_old").one()
        old.processed_at = datetime.utcnow() - timedelta(days=45)

    result = runner.invoke(cli.app, ["cleanup-events", "--days", "30"])

    assert result.exit_code == 0
    assert "Deleted 1" in result.output
    with database.session() as session:
        assert [e.event_id for e in session.query(ProcessedWebhookEvent).all()] == ["evt_new"]
