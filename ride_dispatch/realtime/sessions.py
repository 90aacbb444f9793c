"""Authenticated live sessions and their delivery groups."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol
from uuid import uuid4

import jwt

from ride_dispatch.config import get_settings
from ride_dispatch.errors import AuthError
from ride_dispatch.models.user import UserRole
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)

TOPIC_ALL = "all"
TOPIC_DRIVERS = "role:driver"
TOPIC_ADMIN = "role:admin"


def identity_topic(identity: str) -> str:
    """Group addressing every session of one identity."""
    return f"identity:{identity}"


class Connection(Protocol):
    """Anything that can push JSON to a client, e.g. a FastAPI WebSocket."""

    async def send_json(self, data: Any) -> None: ...


@dataclass(frozen=True)
class Principal:
    """Identity derived from a verified token."""

    identity: str
    role: UserRole

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER


def authenticate(token: str | None) -> Principal:
    """
    Verify an access token and derive the caller's identity and role.

    Args:
        token: Signed JWT carrying ``sub`` (or ``userId``) and ``role``

    Raises:
        AuthError: If the token is missing, malformed, forged or expired
    """
    if not token:
        raise AuthError("Authentication token is required")

    settings = get_settings()

    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Authentication token has expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthError("Invalid authentication token") from e

    identity = claims.get("sub") or claims.get("userId")
    if not identity:
        raise AuthError("Token does not name an identity")

    try:
        role = UserRole(claims.get("role", UserRole.USER.value))
    except ValueError as e:
        raise AuthError(f"Unknown role {claims.get('role')!r}") from e

    return Principal(identity=str(identity), role=role)


@dataclass(eq=False)
class Session:
    """One live connection bound to one identity."""

    principal: Principal
    connection: Connection
    id: str = field(default_factory=lambda: uuid4().hex)
    topics: set[str] = field(default_factory=set)


class SessionRegistry:
    """Tracks connected sessions of this instance and their group memberships."""

    def __init__(self) -> None:
        self._topics: dict[str, set[Session]] = defaultdict(set)
        self._sessions: dict[str, Session] = {}

    def register(self, connection: Connection, principal: Principal) -> Session:
        """Enroll an authenticated connection in its identity and role groups."""
        session = Session(principal=principal, connection=connection)

        topics = [identity_topic(principal.identity), TOPIC_ALL]
        if principal.role == UserRole.DRIVER:
            topics.append(TOPIC_DRIVERS)
        elif principal.role == UserRole.ADMIN:
            topics.append(TOPIC_ADMIN)

        for topic in topics:
            self._topics[topic].add(session)
            session.topics.add(topic)
        self._sessions[session.id] = session

        logger.info(
            "session_registered",
            session_id=session.id,
            identity=principal.identity,
            role=principal.role.value,
        )
        return session

    def unregister(self, session: Session) -> None:
        """Remove every membership of a session."""
        for topic in session.topics:
            members = self._topics.get(topic)
            if members is None:
                continue
            members.discard(session)
            if not members:
                del self._topics[topic]
        session.topics.clear()

        if self._sessions.pop(session.id, None) is not None:
            logger.info(
                "session_unregistered",
                session_id=session.id,
                identity=session.principal.identity,
            )

    def members(self, topic: str) -> list[Session]:
        """Sessions currently in a group."""
        return list(self._topics.get(topic, ()))

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def deliver(
        self,
        topic: str,
        payload: dict[str, Any],
        exclude: Iterable[str] = (),
    ) -> int:
        """
        Send a payload to every current member of a group, at most once each.

        Members whose identity is in ``exclude`` are skipped. A member whose
        send fails is dropped from the registry.

        Returns:
            Number of sessions the payload was handed to
        """
        excluded = set(exclude)
        delivered = 0

        for session in self.members(topic):
            if session.principal.identity in excluded:
                continue
            try:
                await session.connection.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "delivery_failed",
                    session_id=session.id,
                    topic=topic,
                    event_type=payload.get("type"),
                    error=str(e),
                )
                self.unregister(session)

        return delivered
