"""Neo4j implementation of GiftExchangeRepository.
Nodes: Participant, Exclusion, ExchangeRound (at most one), Assignment, Contact, OnboardingSession.
References between nodes are id properties; timestamps are ISO-8601 strings.
"""

from datetime import datetime

from santa.domain import (
    Assignment,
    AssignmentDetails,
    CollectedFields,
    Contact,
    ContactStatus,
    ExchangeRound,
    Exclusion,
    OnboardingSession,
    OnboardingState,
    Participant,
    RoundStatus,
)

_LABELS = ("Participant", "Exclusion", "ExchangeRound", "Assignment", "Contact", "OnboardingSession")

_PARTICIPANT_FIELDS = (
    "name",
    "address",
    "email",
    "chat_user_id",
    "street",
    "city",
    "zip_code",
    "country",
    "phone",
    "notes",
    "wishlist",
    "timezone",
    "timezone_offset",
)

_COLLECTED_FIELDS = ("name", "country", "city", "zip_code", "street", "phone", "notes")

_SAVE_PARTICIPANT_QUERY = """
MERGE (p:Participant {id: $id})
SET p += $props
"""

_DELETE_PARTICIPANT_QUERY = """
MATCH (p:Participant {id: $id})
OPTIONAL MATCH (e:Exclusion)
WHERE e.participant_id = $id OR e.excluded_participant_id = $id
OPTIONAL MATCH (a:Assignment)
WHERE a.giver_id = $id OR a.receiver_id = $id
WITH p, collect(DISTINCT e) AS exclusions, collect(DISTINCT a) AS assignments
FOREACH (n IN exclusions | DETACH DELETE n)
FOREACH (n IN assignments | DETACH DELETE n)
DETACH DELETE p
RETURN 1 AS deleted
"""

_ASSIGNMENT_DETAILS_QUERY = """
MATCH (a:Assignment)
WHERE $round_id IS NULL OR a.round_id = $round_id
MATCH (g:Participant {id: a.giver_id})
MATCH (r:Participant {id: a.receiver_id})
RETURN a, g, r
ORDER BY g.name
"""

_AWAITING_GIFT_QUERY = """
MATCH (a:Assignment)
WHERE a.notified = true AND coalesce(a.gift_sent, false) = false
MATCH (g:Participant {id: a.giver_id})
MATCH (r:Participant {id: a.receiver_id})
RETURN a, g, r
ORDER BY a.notified_at
"""

# Touching the node takes its write lock before the flag is read.
_CLAIM_RECEIVER_QUERY = """
MATCH (a:Assignment {id: $id})
SET a.claim_lock = true
REMOVE a.claim_lock
WITH a
WHERE coalesce(a.receiver_notified, false) = false
SET a.receiver_notified = true
RETURN a.id AS id
"""

_CREATE_ASSIGNMENTS_QUERY = """
UNWIND $rows AS row
CREATE (a:Assignment)
SET a = row
"""


def _datetime_to_iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _iso_to_datetime(s: str | None) -> datetime | None:
    if not s:
        return None
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def ensure_constraints(driver) -> None:
    """Create unique id constraints for every node label if missing."""
    with driver.session() as session:
        for label in _LABELS:
            session.run(
                f"CREATE CONSTRAINT {label.lower()}_id_unique IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.id IS UNIQUE"
            )


class Neo4jGiftExchangeRepository:
    """Stores the gift exchange in Neo4j."""

    def __init__(self, driver: object) -> None:
        self._driver = driver

    def _run(self, query: str, **params) -> list:
        with self._driver.session() as session:
            return list(session.run(query, **params))

    # --- participants ---

    def add_participant(self, participant: Participant) -> None:
        self._run(_SAVE_PARTICIPANT_QUERY, id=participant.id, props=_participant_props(participant))

    def get_participant(self, participant_id: str) -> Participant | None:
        records = self._run("MATCH (p:Participant {id: $id}) RETURN p", id=participant_id)
        return _node_to_participant(records[0]["p"]) if records else None

    def list_participants(self) -> list[Participant]:
        records = self._run("MATCH (p:Participant) RETURN p ORDER BY toLower(p.name)")
        return [_node_to_participant(rec["p"]) for rec in records]

    def find_participant_by_chat_user(self, chat_user_id: str) -> Participant | None:
        records = self._run(
            "MATCH (p:Participant {chat_user_id: $chat_user_id}) RETURN p LIMIT 1",
            chat_user_id=chat_user_id,
        )
        return _node_to_participant(records[0]["p"]) if records else None

    def update_participant(self, participant: Participant) -> bool:
        records = self._run(
            "MATCH (p:Participant {id: $id}) SET p += $props RETURN p.id AS id",
            id=participant.id,
            props=_participant_props(participant),
        )
        return bool(records)

    def delete_participant(self, participant_id: str) -> bool:
        records = self._run(_DELETE_PARTICIPANT_QUERY, id=participant_id)
        return bool(records) and records[0]["deleted"] > 0

    # --- exclusions ---

    def add_exclusion(self, exclusion: Exclusion) -> None:
        self._run(
            """
            CREATE (e:Exclusion {
                id: $id,
                participant_id: $participant_id,
                excluded_participant_id: $excluded_participant_id
            })
            """,
            id=exclusion.id,
            participant_id=exclusion.participant_id,
            excluded_participant_id=exclusion.excluded_participant_id,
        )

    def list_exclusions(self) -> list[Exclusion]:
        records = self._run("MATCH (e:Exclusion) RETURN e")
        return [
            Exclusion(
                participant_id=rec["e"]["participant_id"],
                excluded_participant_id=rec["e"]["excluded_participant_id"],
                id=rec["e"]["id"],
            )
            for rec in records
        ]

    def delete_exclusion(self, exclusion_id: str) -> bool:
        records = self._run(
            "MATCH (e:Exclusion {id: $id}) DELETE e RETURN count(*) AS deleted", id=exclusion_id
        )
        return bool(records) and records[0]["deleted"] > 0

    # --- round ---

    def get_round(self) -> ExchangeRound | None:
        records = self._run("MATCH (r:ExchangeRound) RETURN r LIMIT 1")
        if not records:
            return None
        r = records[0]["r"]
        return ExchangeRound(
            name=r["name"],
            status=RoundStatus(r.get("status") or RoundStatus.DRAFT.value),
            scheduled_at=_iso_to_datetime(r.get("scheduled_at")),
            matching_complete=bool(r.get("matching_complete")),
            notifications_sent=bool(r.get("notifications_sent")),
            message_template=r.get("message_template"),
            id=r["id"],
            created_at=_iso_to_datetime(r["created_at"]),
        )

    def save_round(self, exchange_round: ExchangeRound) -> None:
        with self._driver.session() as session:
            session.execute_write(_save_round, exchange_round)

    # --- assignments ---

    def replace_assignments(self, round_id: str, assignments: list[Assignment]) -> None:
        with self._driver.session() as session:
            session.execute_write(_replace_assignments, round_id, assignments)

    def get_assignment(self, assignment_id: str) -> Assignment | None:
        records = self._run("MATCH (a:Assignment {id: $id}) RETURN a", id=assignment_id)
        return _node_to_assignment(records[0]["a"]) if records else None

    def list_assignment_details(self, round_id: str | None = None) -> list[AssignmentDetails]:
        records = self._run(_ASSIGNMENT_DETAILS_QUERY, round_id=round_id)
        return [_record_to_details(rec) for rec in records]

    def list_awaiting_gift(self) -> list[AssignmentDetails]:
        return [_record_to_details(rec) for rec in self._run(_AWAITING_GIFT_QUERY)]

    def _set(self, assignment_id: str, **props) -> None:
        self._run("MATCH (a:Assignment {id: $id}) SET a += $props", id=assignment_id, props=props)

    def mark_notified(self, assignment_id: str, notified_at: datetime) -> None:
        self._set(assignment_id, notified=True, notified_at=_datetime_to_iso(notified_at))

    def set_gift_sent(self, assignment_id: str, gift_sent: bool, at: datetime | None) -> None:
        self._set(assignment_id, gift_sent=gift_sent, gift_sent_at=_datetime_to_iso(at))

    def set_next_reminder(self, assignment_id: str, next_reminder_at: datetime) -> None:
        self._set(assignment_id, next_reminder_at=_datetime_to_iso(next_reminder_at))

    def record_reminder_sent(
        self, assignment_id: str, sent_at: datetime, next_reminder_at: datetime
    ) -> None:
        self._set(
            assignment_id,
            last_reminder_at=_datetime_to_iso(sent_at),
            next_reminder_at=_datetime_to_iso(next_reminder_at),
        )

    def claim_receiver_notification(self, assignment_id: str) -> bool:
        return bool(self._run(_CLAIM_RECEIVER_QUERY, id=assignment_id))

    def release_receiver_notification(self, assignment_id: str) -> None:
        self._set(assignment_id, receiver_notified=False)

    # --- contacts ---

    def add_contact(self, contact: Contact) -> None:
        self.save_contact(contact)

    def get_contact(self, contact_id: str) -> Contact | None:
        records = self._run("MATCH (c:Contact {id: $id}) RETURN c", id=contact_id)
        return _node_to_contact(records[0]["c"]) if records else None

    def get_contact_by_chat_user(self, chat_user_id: str) -> Contact | None:
        records = self._run(
            "MATCH (c:Contact {chat_user_id: $chat_user_id}) RETURN c LIMIT 1",
            chat_user_id=chat_user_id,
        )
        return _node_to_contact(records[0]["c"]) if records else None

    def list_contacts(self) -> list[Contact]:
        records = self._run("MATCH (c:Contact) RETURN c ORDER BY c.created_at")
        return [_node_to_contact(rec["c"]) for rec in records]

    def save_contact(self, contact: Contact) -> None:
        self._run(
            "MERGE (c:Contact {id: $id}) SET c += $props",
            id=contact.id,
            props={
                "chat_user_id": contact.chat_user_id,
                "username": contact.username,
                "display_name": contact.display_name,
                "email": contact.email,
                "status": contact.status.value,
                "invited_at": _datetime_to_iso(contact.invited_at),
                "responded_at": _datetime_to_iso(contact.responded_at),
                "created_at": _datetime_to_iso(contact.created_at),
            },
        )

    def delete_contact(self, contact_id: str) -> bool:
        records = self._run(
            """
            MATCH (c:Contact {id: $id})
            OPTIONAL MATCH (s:OnboardingSession {contact_id: $id})
            WITH c, collect(s) AS sessions
            FOREACH (n IN sessions | DETACH DELETE n)
            DETACH DELETE c
            RETURN 1 AS deleted
            """,
            id=contact_id,
        )
        return bool(records) and records[0]["deleted"] > 0

    # --- onboarding sessions ---

    def get_session(self, chat_user_id: str) -> OnboardingSession | None:
        records = self._run(
            """
            MATCH (s:OnboardingSession {chat_user_id: $chat_user_id})
            RETURN s
            ORDER BY s.created_at DESC
            LIMIT 1
            """,
            chat_user_id=chat_user_id,
        )
        if not records:
            return None
        s = records[0]["s"]
        return OnboardingSession(
            contact_id=s["contact_id"],
            chat_user_id=s["chat_user_id"],
            state=OnboardingState(s["state"]),
            collected=CollectedFields(**{f: s.get(f"collected_{f}") for f in _COLLECTED_FIELDS}),
            id=s["id"],
            last_interaction_at=_iso_to_datetime(s["last_interaction_at"]),
            created_at=_iso_to_datetime(s["created_at"]),
        )

    def save_session(self, session: OnboardingSession) -> None:
        props = {
            "contact_id": session.contact_id,
            "chat_user_id": session.chat_user_id,
            "state": session.state.value,
            "last_interaction_at": _datetime_to_iso(session.last_interaction_at),
            "created_at": _datetime_to_iso(session.created_at),
        }
        for f in _COLLECTED_FIELDS:
            props[f"collected_{f}"] = getattr(session.collected, f)
        self._run("MERGE (s:OnboardingSession {id: $id}) SET s += $props", id=session.id, props=props)

    def reset_all(self) -> None:
        labels = " OR ".join(f"n:{label}" for label in _LABELS)
        self._run(f"MATCH (n) WHERE {labels} DETACH DELETE n")


def _save_round(tx, exchange_round: ExchangeRound) -> None:
    tx.run("MATCH (r:ExchangeRound) WHERE r.id <> $id DETACH DELETE r", id=exchange_round.id)
    tx.run(
        "MERGE (r:ExchangeRound {id: $id}) SET r += $props",
        id=exchange_round.id,
        props={
            "name": exchange_round.name,
            "status": exchange_round.status.value,
            "scheduled_at": _datetime_to_iso(exchange_round.scheduled_at),
            "matching_complete": exchange_round.matching_complete,
            "notifications_sent": exchange_round.notifications_sent,
            "message_template": exchange_round.message_template,
            "created_at": _datetime_to_iso(exchange_round.created_at),
        },
    )


def _replace_assignments(tx, round_id: str, assignments: list[Assignment]) -> None:
    tx.run("MATCH (a:Assignment {round_id: $round_id}) DETACH DELETE a", round_id=round_id)
    rows = [
        {
            "id": a.id,
            "round_id": a.round_id,
            "giver_id": a.giver_id,
            "receiver_id": a.receiver_id,
            "notified": a.notified,
            "notified_at": _datetime_to_iso(a.notified_at),
            "gift_sent": a.gift_sent,
            "gift_sent_at": _datetime_to_iso(a.gift_sent_at),
            "last_reminder_at": _datetime_to_iso(a.last_reminder_at),
            "next_reminder_at": _datetime_to_iso(a.next_reminder_at),
            "receiver_notified": a.receiver_notified,
        }
        for a in assignments
    ]
    if rows:
        tx.run(_CREATE_ASSIGNMENTS_QUERY, rows=rows)


def _participant_props(participant: Participant) -> dict:
    return {f: getattr(participant, f) for f in _PARTICIPANT_FIELDS}


def _node_to_participant(p) -> Participant:
    return Participant(id=p["id"], **{f: p.get(f) for f in _PARTICIPANT_FIELDS})


def _node_to_assignment(a) -> Assignment:
    return Assignment(
        round_id=a["round_id"],
        giver_id=a["giver_id"],
        receiver_id=a["receiver_id"],
        id=a["id"],
        notified=bool(a.get("notified")),
        notified_at=_iso_to_datetime(a.get("notified_at")),
        gift_sent=bool(a.get("gift_sent")),
        gift_sent_at=_iso_to_datetime(a.get("gift_sent_at")),
        last_reminder_at=_iso_to_datetime(a.get("last_reminder_at")),
        next_reminder_at=_iso_to_datetime(a.get("next_reminder_at")),
        receiver_notified=bool(a.get("receiver_notified")),
    )


def _record_to_details(record) -> AssignmentDetails:
    return AssignmentDetails(
        assignment=_node_to_assignment(record["a"]),
        giver=_node_to_participant(record["g"]),
        receiver=_node_to_participant(record["r"]),
    )


def _node_to_contact(c) -> Contact:
    return Contact(
        chat_user_id=c["chat_user_id"],
        username=c.get("username") or "",
        display_name=c.get("display_name") or "",
        email=c.get("email"),
        status=ContactStatus(c["status"]),
        invited_at=_iso_to_datetime(c.get("invited_at")),
        responded_at=_iso_to_datetime(c.get("responded_at")),
        id=c["id"],
        created_at=_iso_to_datetime(c["created_at"]),
    )
