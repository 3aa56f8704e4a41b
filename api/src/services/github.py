"""
GitHub service for webhook validation and payload parsing.
"""

import hmac
import hashlib
from typing import Dict, Any

from api.src.config import get_settings
from api.src.models.trigger import EventKind, TriggerContext

settings = get_settings()

PULL_REQUEST_ACTIONS = {"opened", "synchronize", "reopened"}

def verify_signature(payload: bytes, signature: str) -> bool:
    """Verify GitHub webhook signature."""
    if not settings.github_webhook_secret:
        # Skip verification if no secret configured (development)
        return True

    expected = "sha256=" + hmac.new(
        settings.github_webhook_secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature)

def strip_ref(ref: str) -> str:
    """refs/heads/main -> main"""
    return ref.replace("refs/heads/", "", 1) if ref.startswith("refs/heads/") else ref

def parse_push_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract relevant info from a GitHub push payload."""
    repo = payload.get("repository", {})
    head_commit = payload.get("head_commit") or {}
    branch = strip_ref(payload.get("ref", ""))

    return {
        "repo_name": repo.get("name", ""),
        "repo_full_name": repo.get("full_name", ""),
        "clone_url": repo.get("clone_url", ""),
        "commit_sha": head_commit.get("id", payload.get("after", "")),
        "branch": branch,
        "target_branch": branch,
        "pr_number": None,
        "deleted": bool(payload.get("deleted", False)),
        "commit_message": head_commit.get("message", ""),
        "sender": payload.get("pusher", {}).get("name", ""),
    }

def parse_pull_request_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract relevant info from a GitHub pull_request payload."""
    repo = payload.get("repository", {})
    pr = payload.get("pull_request", {})
    head = pr.get("head", {})
    base = pr.get("base", {})

    return {
        "repo_name": repo.get("name", ""),
        "repo_full_name": repo.get("full_name", ""),
        # Forks are cloned from the head repository
        "clone_url": (head.get("repo") or {}).get("clone_url") or repo.get("clone_url", ""),
        "commit_sha": head.get("sha", ""),
        "branch": head.get("ref", ""),
        "target_branch": base.get("ref", ""),
        "pr_number": payload.get("number", pr.get("number")),
        "action": payload.get("action", ""),
        "sender": payload.get("sender", {}).get("login", ""),
    }

def build_trigger_context(event_kind: EventKind, webhook_data: Dict[str, Any]) -> TriggerContext:
    """Pull requests are keyed by number so every push updates the same report."""
    repo = webhook_data["repo_full_name"]
    if event_kind == EventKind.PULL_REQUEST:
        change_id = f"{repo}#{webhook_data['pr_number']}"
    else:
        change_id = f"{repo}@{webhook_data['commit_sha']}"

    return TriggerContext(
        event_kind=event_kind,
        source_ref=webhook_data["branch"],
        target_ref=webhook_data["target_branch"],
        change_id=change_id,
    )

def supersede_key(context: TriggerContext, webhook_data: Dict[str, Any]) -> str:
    """
    Key under which a run claims to be the newest for its change.
    Pushes are claimed per branch, since every push has its own change_id.
    """
    if context.event_kind == EventKind.PUSH:
        return f"{webhook_data['repo_full_name']}:refs/heads/{context.source_ref}"
    return context.change_id
