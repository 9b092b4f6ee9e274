"""Per-stage agent history mirroring.

Each backend agent keeps its own ``{role, content}`` history keyed by the
stage it owns. Messages appended to a session are mirrored into the
field for the session's current stage; unknown stages are not mirrored.
"""

import logging

from sessionstream.models.session import Message, MessageType, Session

logger = logging.getLogger(__name__)

STAGE_HISTORY_FIELDS: dict[str, str] = {
    "welcome": "welcomeHistory",
    "info_collection": "infoCollectionHistory",
    "information_collection": "infoCollectionHistory",
    "coding": "codingHistory",
    "code_generation": "codingHistory",
}


def history_field_for(stage: str) -> str | None:
    """Return the agent history field owning ``stage``, if any."""
    return STAGE_HISTORY_FIELDS.get(stage)


def _entry(message: Message) -> dict[str, str]:
    role = "user" if message.type == MessageType.USER_MESSAGE else "assistant"
    return {"role": role, "content": message.content}


def mirror_message(session: Session, message: Message) -> bool:
    """Append ``message`` to the current stage's agent history.

    Args:
        session: Session whose metadata holds the agent histories.
        message: Message to mirror (content as of now).

    Returns:
        True if the message was mirrored.
    """
    target = history_field_for(session.metadata.progress.current_stage)
    if target is None:
        return False
    history = session.metadata.agent_histories.setdefault(target, [])
    history.append(_entry(message))
    logger.debug("Mirrored message to %s (len=%d)", target, len(history))
    return True


def migrate_history(session: Session) -> bool:
    """Copy the whole conversation into the current stage's agent history.

    Only runs when the session has messages but every agent history is
    empty, e.g. sessions created before per-stage histories existed.

    Args:
        session: Session to migrate in place.

    Returns:
        True if a migration happened.
    """
    if not session.conversation_history:
        return False
    if any(session.metadata.agent_histories.get(f) for f in set(STAGE_HISTORY_FIELDS.values())):
        return False
    target = history_field_for(session.metadata.progress.current_stage) or "welcomeHistory"
    history = session.metadata.agent_histories.setdefault(target, [])
    history.extend(_entry(m) for m in session.conversation_history)
    logger.info(
        "Migrated %d messages of session %s into %s",
        len(session.conversation_history),
        session.id,
        target,
    )
    return True
