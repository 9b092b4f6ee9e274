"""Reconciliation, triggers, persistence and the chat system facade."""

from sessionstream.services.background import BackgroundTasks
from sessionstream.services.chat_system import ChatSystem, SendResult, SendStatus
from sessionstream.services.dedup import InFlightGuard, build_send_key
from sessionstream.services.reconciler import (
    DEFAULT_AGENT_POLICY,
    AgentPolicy,
    MergeDecision,
    MergeOutcome,
    MergePolicy,
    MessageReconciler,
    ReconcilerState,
    choose_merge_policy,
)
from sessionstream.services.retry import RetryController, RetryOutcome, RetryPolicy
from sessionstream.services.session_sync import SessionStore, SessionSynchronizer
from sessionstream.services.title_generation import HttpTitleGenerator
from sessionstream.services.triggers import TriggerDispatcher

__all__ = [
    "BackgroundTasks",
    "ChatSystem",
    "SendResult",
    "SendStatus",
    "InFlightGuard",
    "build_send_key",
    "DEFAULT_AGENT_POLICY",
    "AgentPolicy",
    "MergeDecision",
    "MergeOutcome",
    "MergePolicy",
    "MessageReconciler",
    "ReconcilerState",
    "choose_merge_policy",
    "RetryController",
    "RetryOutcome",
    "RetryPolicy",
    "SessionStore",
    "SessionSynchronizer",
    "HttpTitleGenerator",
    "TriggerDispatcher",
]
