"""Stats snapshot — a read-only view of the hub.  No side effects."""

import time
from collections import Counter
from typing import TYPE_CHECKING

from relay.schemas import ConnectedUser, StatsSnapshot

if TYPE_CHECKING:
    from relay.realtime.hub import RelayHub


def build_snapshot(hub: "RelayHub") -> StatsSnapshot:
    now = time.time()
    counters = hub.counters
    sessions = hub.registry.authenticated()

    connected_users = [
        ConnectedUser(
            username=s.username,
            is_broadcaster=s.is_broadcaster,
            is_admin=s.is_admin,
            source_filters=s.source_filters.to_list(),
            ip=s.remote_ip,
            connected_for=int(now - s.connected_at),
            messages_received=s.messages_received,
        )
        for s in sessions
    ]

    return StatsSnapshot(
        current_connections=len(hub.registry),
        authenticated_users=len(sessions),
        broadcasters=sum(1 for s in sessions if s.is_broadcaster),
        admins=sum(1 for s in sessions if s.is_admin),
        total_connections=counters.total_connections,
        total_disconnections=counters.total_disconnections,
        total_broadcasts=counters.total_broadcasts,
        total_messages_delivered=counters.total_messages_delivered,
        total_auth_failures=counters.total_auth_failures,
        peak_connections=counters.peak_authenticated,
        uptime=round(counters.uptime, 3),
        server_started_at=int(counters.started_at * 1000),
        connections_by_user=dict(Counter(s.username for s in sessions)),
        recent_broadcasts=list(hub.recent_broadcasts),
        connected_users=connected_users,
    )
