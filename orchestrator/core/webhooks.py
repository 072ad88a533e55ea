"""
Webhooks - Push event classification for GitHub, GitLab and Bitbucket.

Each platform is a `PushEvent` variant that knows how to recognise its own
delivery (`matches`), verify it against a shared secret, and extract a
`WebhookInfo` from the payload.
"""

import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from orchestrator.core.errors import InvalidWebhookError

UNKNOWN = "unknown"


@dataclass(frozen=True)
class WebhookInfo:
    should_index: bool
    reason: str
    platform: str
    commit: str | None = None
    full_commit: str | None = None
    branch: str | None = None
    author: str | None = None


# Payload models (only the fields we read)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _Author(_Payload):
    name: str | None = None


class _Commit(_Payload):
    id: str
    author: _Author | None = None


class _Repository(_Payload):
    name: str | None = None
    url: str | None = None


class GitHubPushPayload(_Payload):
    deleted: bool | None = None
    commits: list[_Commit] | None = None
    head_commit: _Commit | None = None
    ref: str | None = None
    repository: _Repository | None = None


class GitLabPushPayload(_Payload):
    commits: list[_Commit] | None = None
    checkout_sha: str | None = None
    ref: str | None = None
    repository: _Repository | None = None


class _BitbucketAuthor(_Payload):
    raw: str | None = None


class _BitbucketTarget(_Payload):
    hash: str | None = None
    author: _BitbucketAuthor | None = None


class _BitbucketRef(_Payload):
    type: str | None = None
    name: str | None = None
    target: _BitbucketTarget | None = None


class _BitbucketChange(_Payload):
    new: _BitbucketRef | None = None


class _BitbucketPush(_Payload):
    changes: list[_BitbucketChange] | None = None


class BitbucketPushPayload(_Payload):
    push: _BitbucketPush | None = None
    repo: _Repository | None = None


def _branch_from_ref(ref: str | None) -> str:
    if not ref:
        return UNKNOWN
    return ref.removeprefix("refs/heads/")


def _short(full_commit: str) -> str:
    return full_commit[:7]


class PushEvent:
    """Base variant. Subclasses set `platform` and implement the hooks."""

    platform: ClassVar[str]
    payload_model: ClassVar[type[BaseModel]]

    def __init__(self, headers: Mapping[str, str], payload: dict[str, Any], body: bytes) -> None:
        self.headers = headers
        self.payload = payload
        self.body = body

    @classmethod
    def matches(cls, headers: Mapping[str, str], payload: dict[str, Any]) -> bool:
        raise NotImplementedError

    def verify(self, secret: str) -> bool:
        raise NotImplementedError

    def extract(self) -> WebhookInfo:
        try:
            data = self.payload_model.model_validate(self.payload)
        except ValidationError:
            return self._skip(f"Invalid {self.platform} payload")
        return self._extract(data)

    def _extract(self, data: Any) -> WebhookInfo:
        raise NotImplementedError

    def _skip(self, reason: str) -> WebhookInfo:
        return WebhookInfo(should_index=False, reason=reason, platform=self.platform)

    def _accept(self, full_commit: str, branch: str, author: str) -> WebhookInfo:
        return WebhookInfo(
            should_index=True,
            reason="Valid push event",
            platform=self.platform,
            commit=_short(full_commit),
            full_commit=full_commit,
            branch=branch,
            author=author,
        )


class GitHubPush(PushEvent):
    platform = "GitHub"
    payload_model = GitHubPushPayload

    @classmethod
    def matches(cls, headers, payload) -> bool:
        return (
            headers.get("x-github-event") == "push"
            and bool(headers.get("x-hub-signature-256"))
            and "repository" in payload
        )

    def verify(self, secret: str) -> bool:
        signature = self.headers.get("x-hub-signature-256", "")
        expected = "sha256=" + hmac.new(secret.encode(), self.body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature, expected)

    def _extract(self, data: GitHubPushPayload) -> WebhookInfo:
        if data.deleted:
            return self._skip("Branch deleted")
        if not data.commits:
            return self._skip("No commits in push")

        head = data.head_commit
        author = head.author.name if head and head.author and head.author.name else UNKNOWN
        return self._accept(
            full_commit=head.id if head else UNKNOWN,
            branch=_branch_from_ref(data.ref),
            author=author,
        )


class GitLabPush(PushEvent):
    platform = "GitLab"
    payload_model = GitLabPushPayload

    @classmethod
    def matches(cls, headers, payload) -> bool:
        return (
            headers.get("x-gitlab-event") == "Push Hook"
            and bool(headers.get("x-gitlab-token"))
            and "repository" in payload
        )

    def verify(self, secret: str) -> bool:
        return hmac.compare_digest(self.headers.get("x-gitlab-token", ""), secret)

    def _extract(self, data: GitLabPushPayload) -> WebhookInfo:
        if not data.commits:
            return self._skip("No commits in push")

        first = data.commits[0]
        author = first.author.name if first.author and first.author.name else UNKNOWN
        return self._accept(
            full_commit=data.checkout_sha or first.id or UNKNOWN,
            branch=_branch_from_ref(data.ref),
            author=author,
        )


class BitbucketPush(PushEvent):
    platform = "Bitbucket"
    payload_model = BitbucketPushPayload

    @classmethod
    def matches(cls, headers, payload) -> bool:
        return headers.get("x-event-key") == "repo:push" and "repo" in payload

    def verify(self, secret: str) -> bool:
        signature = self.headers.get("x-hub-signature")
        if not signature:
            # Bitbucket only signs deliveries when a secret is set on its side
            return True
        expected = "sha256=" + hmac.new(secret.encode(), self.body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature, expected)

    def _extract(self, data: BitbucketPushPayload) -> WebhookInfo:
        changes = data.push.changes if data.push else None
        if not changes:
            return self._skip("No changes in push")

        new = changes[0].new
        if new is None or new.type == "tag":
            return self._skip("Tag push or branch deletion")

        target = new.target
        author = target.author.raw if target and target.author and target.author.raw else UNKNOWN
        return self._accept(
            full_commit=(target.hash if target else None) or UNKNOWN,
            branch=new.name or UNKNOWN,
            author=author,
        )


PUSH_EVENT_TYPES: tuple[type[PushEvent], ...] = (GitHubPush, GitLabPush, BitbucketPush)


def classify(
    headers: Mapping[str, str],
    payload: Any,
    body: bytes = b"",
) -> PushEvent:
    """
    Pick the single platform variant a delivery belongs to.

    Raises:
        InvalidWebhookError: If no variant, or more than one, matches
    """
    if not isinstance(payload, dict):
        raise InvalidWebhookError("Invalid webhook")

    lowered = {k.lower(): v for k, v in headers.items()}
    matched = [event for event in PUSH_EVENT_TYPES if event.matches(lowered, payload)]
    if len(matched) != 1:
        raise InvalidWebhookError("Invalid webhook")
    return matched[0](lowered, payload, body)


def verify_signature(event: PushEvent, secret: str | None) -> None:
    """
    Check a delivery against the project's shared secret, when one is set.

    Raises:
        InvalidWebhookError: If verification fails
    """
    if not secret:
        return
    if not event.verify(secret):
        raise InvalidWebhookError(f"Invalid {event.platform} webhook signature")
