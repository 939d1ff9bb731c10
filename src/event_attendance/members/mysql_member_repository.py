from __future__ import annotations

from ..core.enums import ScopeType
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall
from ..events.model import EventScope
from .repository import MemberDirectory


class MySQLMemberDirectory(MemberDirectory):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def scopes_for(self, user_id: int) -> frozenset[EventScope]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT scope_type, target_id FROM member_scopes WHERE user_id=%s",
                (int(user_id),),
            )
            return frozenset(
                EventScope(ScopeType(r["scope_type"]), int(r["target_id"])) for r in fetchall(cur)
            )

    def members_of(self, scope: EventScope) -> frozenset[int]:
        if scope.is_all:
            sql, params = "SELECT DISTINCT user_id FROM member_scopes", ()
        elif scope.target_id is None:
            return frozenset()
        else:
            sql = "SELECT user_id FROM member_scopes WHERE scope_type=%s AND target_id=%s"
            params = (scope.scope_type.value, int(scope.target_id))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(sql, params)
            return frozenset(int(r["user_id"]) for r in fetchall(cur))
