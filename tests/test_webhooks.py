import pytest

from orchestrator.core.errors import InvalidWebhookError
from orchestrator.core.webhooks import (
    UNKNOWN,
    BitbucketPush,
    GitHubPush,
    GitLabPush,
    classify,
    verify_signature,
)

from tests.payloads import (
    COMMIT,
    bitbucket_push,
    encode,
    github_headers,
    github_push,
    gitlab_push,
)


def test_classifies_github_push():
    payload = github_push()
    body = encode(payload)

    event = classify(github_headers(body), payload, body)
    info = event.extract()

    assert isinstance(event, GitHubPush)
    assert info.should_index is True
    assert info.reason == "Valid push event"
    assert info.commit == COMMIT[:7]
    assert info.full_commit == COMMIT
    assert info.branch == "main"
    assert info.author == "Ada"


def test_classifies_gitlab_push():
    payload = gitlab_push(ref="refs/heads/release")
    headers = {"X-Gitlab-Event": "Push Hook", "X-Gitlab-Token": "tok"}

    event = classify(headers, payload)
    info = event.extract()

    assert isinstance(event, GitLabPush)
    assert info.branch == "release"
    assert info.author == "Grace"
    assert info.commit == COMMIT[:7]


def test_classifies_bitbucket_push():
    payload = bitbucket_push(name="feature/x")

    event = classify({"X-Event-Key": "repo:push"}, payload)
    info = event.extract()

    assert isinstance(event, BitbucketPush)
    assert info.should_index is True
    assert info.branch == "feature/x"
    assert info.author == "Linus <l@example.com>"


def test_unrecognised_delivery_is_rejected():
    with pytest.raises(InvalidWebhookError):
        classify({"X-Some-Event": "push"}, github_push())


def test_delivery_matching_two_platforms_is_rejected():
    payload = github_push()
    body = encode(payload)
    headers = github_headers(body) | {"X-Gitlab-Event": "Push Hook", "X-Gitlab-Token": "tok"}

    with pytest.raises(InvalidWebhookError):
        classify(headers, payload, body)


def test_github_without_signature_header_does_not_match():
    with pytest.raises(InvalidWebhookError):
        classify({"X-GitHub-Event": "push"}, github_push())


def test_empty_repository_object_still_matches():
    payload = github_push() | {"repository": {}}
    body = encode(payload)

    event = classify(github_headers(body), payload, body)

    assert isinstance(event, GitHubPush)
    assert event.extract().should_index is True


def test_payload_without_repository_key_does_not_match():
    payload = github_push()
    del payload["repository"]
    body = encode(payload)

    with pytest.raises(InvalidWebhookError):
        classify(github_headers(body), payload, body)


def test_non_object_payload_is_rejected():
    with pytest.raises(InvalidWebhookError):
        classify({"X-Event-Key": "repo:push"}, ["not", "an", "object"])


def test_github_skip_reasons():
    deleted = github_push(deleted=True)
    empty = github_push(commits=False)

    for payload, reason in ((deleted, "Branch deleted"), (empty, "No commits in push")):
        body = encode(payload)
        info = classify(github_headers(body), payload, body).extract()
        assert info.should_index is False
        assert info.reason == reason


def test_bitbucket_skip_reasons():
    tag = bitbucket_push(ref_type="tag")
    nothing = {"push": {"changes": []}, "repo": {"name": "api"}}

    assert classify({"X-Event-Key": "repo:push"}, tag).extract().reason == (
        "Tag push or branch deletion"
    )
    assert classify({"X-Event-Key": "repo:push"}, nothing).extract().reason == (
        "No changes in push"
    )


def test_missing_ref_yields_unknown_branch():
    payload = github_push()
    del payload["ref"]
    body = encode(payload)

    info = classify(github_headers(body), payload, body).extract()

    assert info.branch == UNKNOWN


def test_github_signature_verification():
    payload = github_push()
    body = encode(payload)
    event = classify(github_headers(body, secret="right"), payload, body)

    verify_signature(event, "right")
    with pytest.raises(InvalidWebhookError):
        verify_signature(event, "wrong")


def test_gitlab_token_verification():
    event = classify({"X-Gitlab-Event": "Push Hook", "X-Gitlab-Token": "tok"}, gitlab_push())

    verify_signature(event, "tok")
    with pytest.raises(InvalidWebhookError):
        verify_signature(event, "other")


def test_no_secret_configured_skips_verification():
    payload = github_push()
    body = encode(payload)
    headers = github_headers(body) | {"X-Hub-Signature-256": "sha256=bogus"}

    verify_signature(classify(headers, payload, body), None)
