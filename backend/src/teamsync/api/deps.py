"""FastAPI dependencies.

The Circle gateway and the database are injected per request so tests
can swap them through ``app.dependency_overrides``.
"""

from fastapi import Depends

from teamsync.billing.reconciler import SubscriptionReconciler
from teamsync.circle.gateway import CircleGateway, TagGateway
from teamsync.storage.db import Database, db
from teamsync.teams.dashboard import DashboardService
from teamsync.teams.invites import InviteService
from teamsync.teams.sync import StatusSyncService


def get_database() -> Database:
    return db


def get_gateway() -> TagGateway:
    return CircleGateway()


def get_invite_service(
    gateway: TagGateway = Depends(get_gateway),
    database: Database = Depends(get_database),
) -> InviteService:
    return InviteService(gateway, database)


def get_sync_service(
    gateway: TagGateway = Depends(get_gateway),
    database: Database = Depends(get_database),
) -> StatusSyncService:
    return StatusSyncService(gateway, database)


def get_dashboard_service(database: Database = Depends(get_database)) -> DashboardService:
    return DashboardService(database)


def get_reconciler(
    gateway: TagGateway = Depends(get_gateway),
    database: Database = Depends(get_database),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(gateway, database)
