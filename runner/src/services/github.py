"""
GitHub service for publishing reports as a single pull request comment.
"""

import logging
from typing import Optional

import httpx

from runner.src.models.step import Report
from runner.src.services.report_builder import REPORT_MARKER
from runner.src.services.report_store import ReportStore

logger = logging.getLogger(__name__)

class CommentPublisher:
    """Create or edit the report comment on a pull request."""

    def __init__(self, client: httpx.Client):
        self.client = client

    @classmethod
    def from_token(cls, token: str, api_url: str = "https://api.github.com") -> "CommentPublisher":
        client = httpx.Client(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=30.0,
        )
        return cls(client)

    def close(self):
        self.client.close()

    def find_existing_comment(self, repo_full_name: str, pr_number: int) -> Optional[str]:
        """Look for a comment left by an earlier run."""
        page = 1
        while True:
            response = self.client.get(
                f"/repos/{repo_full_name}/issues/{pr_number}/comments",
                params={"per_page": 100, "page": page},
            )
            response.raise_for_status()
            comments = response.json()

            for comment in comments:
                if REPORT_MARKER in (comment.get("body") or ""):
                    return str(comment["id"])

            if len(comments) < 100:
                return None
            page += 1

    def create_comment(self, repo_full_name: str, pr_number: int, body: str) -> str:
        response = self.client.post(
            f"/repos/{repo_full_name}/issues/{pr_number}/comments",
            json={"body": body},
        )
        response.raise_for_status()
        return str(response.json()["id"])

    def update_comment(self, repo_full_name: str, comment_id: str, body: str) -> bool:
        """Edit a comment in place. Returns False when it no longer exists."""
        response = self.client.patch(
            f"/repos/{repo_full_name}/issues/comments/{comment_id}",
            json={"body": body},
        )
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    def publish(
        self,
        store: ReportStore,
        report: Report,
        repo_full_name: str,
        pr_number: int,
    ) -> Optional[str]:
        """
        Publish `report` so the pull request shows exactly one report comment.
        Returns the comment id, which is remembered in the store, or None when
        a newer revision has been stored meanwhile and this one is stale.
        """
        with store.lock(report.change_id):
            current = store.get(report.change_id)
            if current is not None and current.revision > report.revision:
                logger.info(
                    f"Not publishing revision {report.revision} of {report.change_id}, "
                    f"revision {current.revision} is newer"
                )
                return None
            return self._publish_locked(store, report, repo_full_name, pr_number)

    def _publish_locked(
        self,
        store: ReportStore,
        report: Report,
        repo_full_name: str,
        pr_number: int,
    ) -> str:
        comment_id = store.get_comment_id(report.change_id)
        if comment_id is None:
            comment_id = self.find_existing_comment(repo_full_name, pr_number)

        if comment_id is not None:
            if self.update_comment(repo_full_name, comment_id, report.body):
                logger.info(f"Updated report comment {comment_id} on {repo_full_name}#{pr_number}")
                store.set_comment_id(report.change_id, comment_id)
                return comment_id
            logger.warning(f"Report comment {comment_id} is gone, creating a new one")

        comment_id = self.create_comment(repo_full_name, pr_number, report.body)
        logger.info(f"Created report comment {comment_id} on {repo_full_name}#{pr_number}")
        store.set_comment_id(report.change_id, comment_id)
        return comment_id
