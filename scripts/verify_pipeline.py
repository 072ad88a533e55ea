#!/usr/bin/env python3
"""
Pipeline Verification Script for the Indexing Orchestrator.

Runs one indexing job end to end against a live deployment:
1. Checking API health and readiness
2. Triggering indexing for an existing project
3. Polling the job until it finishes
4. Checking the project's index summary
5. Printing queue statistics
"""

import argparse
import sys
import time

import httpx

# --- Configuration ---
DEFAULT_BASE_URL = "http://localhost:8000"
POLL_INTERVAL_SECONDS = 5
MAX_POLL_ATTEMPTS = 120  # 10 minutes max wait


def check_health(client: httpx.Client) -> bool:
    """Check that the API answers and is ready."""
    print("\n--- Step 1: Checking API Health ---")
    try:
        health = client.get("/health")
        ready = client.get("/ready")
    except httpx.ConnectError:
        print(f"  ❌ Could not connect to API at {client.base_url}")
        return False

    if health.status_code != 200:
        print(f"  ❌ API returned status {health.status_code}")
        return False
    print(f"  ✅ API is healthy: version {health.json().get('version')}")

    checks = ready.json().get("checks", {})
    for name, ok in checks.items():
        print(f"     {'✅' if ok else '⚠️ '} {name}")
    return True


def trigger_indexing(
    client: httpx.Client,
    project_id: str,
    branch: str | None,
    incremental: bool,
) -> dict | None:
    """Queue an API-triggered indexing run."""
    print(f"\n--- Step 2: Triggering Indexing for project {project_id} ---")
    payload = {"full_reindex": not incremental, "triggered_by": "API"}
    if branch:
        payload["branch"] = branch

    try:
        response = client.post(f"/projects/{project_id}/index", json=payload)
    except httpx.HTTPError as e:
        print(f"  ❌ Request failed: {e}")
        return None

    if response.status_code == 202:
        data = response.json()
        print(f"  ✅ Job queued: job_id={data['job_id']} branch={data['branch']}")
        return data
    if response.status_code == 409:
        print("  ⚠️  Project is already indexing; wait for the running job or stop it first")
        return None
    print(f"  ❌ Trigger failed with status {response.status_code}: {response.text}")
    return None


def poll_job(client: httpx.Client, job_id: str) -> dict | None:
    """Poll a job until it reaches a terminal state."""
    print(f"\n--- Step 3: Polling job_id={job_id} ---")
    terminal_states = {"COMPLETED", "FAILED", "CANCELLED"}

    for attempt in range(1, MAX_POLL_ATTEMPTS + 1):
        try:
            response = client.get(f"/jobs/{job_id}")
        except httpx.HTTPError as e:
            print(f"  ⚠️  Request failed: {e}")
            time.sleep(POLL_INTERVAL_SECONDS)
            continue

        if response.status_code != 200:
            print(f"  ⚠️  Status check returned {response.status_code}")
            time.sleep(POLL_INTERVAL_SECONDS)
            continue

        job = response.json()
        status = job["status"]
        print(
            f"  [{attempt}/{MAX_POLL_ATTEMPTS}] {status} {job['progress']}% "
            f"({job['processed_files']}/{job['total_files']}) {job.get('current_file') or ''}"
        )

        if status in terminal_states:
            if status != "COMPLETED":
                print(f"  ❌ Job ended {status}: {job.get('error_message')}")
                return None
            print(
                f"  ✅ Completed at {job['commit_hash'][:7] if job['commit_hash'] else '?'}: "
                f"+{job['vectors_added']} ~{job['vectors_updated']} -{job['vectors_deleted']} vectors"
            )
            return job

        time.sleep(POLL_INTERVAL_SECONDS)

    print(f"  ❌ Timed out after {MAX_POLL_ATTEMPTS * POLL_INTERVAL_SECONDS} seconds")
    return None


def verify_project(client: httpx.Client, project_id: str, job: dict) -> bool:
    """Check that the project summary reflects the finished job."""
    print("\n--- Step 4: Verifying Project Summary ---")
    response = client.get(f"/projects/{project_id}/index")
    if response.status_code != 200:
        print(f"  ❌ Failed to get project status: {response.status_code} - {response.text}")
        return False

    project = response.json()
    if project["index_status"] != "COMPLETED":
        print(f"  ❌ Project is {project['index_status']}: {project.get('last_error')}")
        return False
    if project["last_indexed_commit"] != job["commit_hash"]:
        print("  ❌ Project commit does not match the job's commit")
        return False

    print(
        f"  ✅ Project indexed: {project['file_count']} files, "
        f"{project['vector_count']} vectors"
    )
    return True


def show_queue(client: httpx.Client) -> None:
    print("\n--- Step 5: Queue Statistics ---")
    response = client.get("/admin/queue-stats")
    if response.status_code == 200:
        for state, count in response.json()["queue_stats"].items():
            print(f"     {state:<10} {count}")
    else:
        print(f"  ⚠️  Queue stats returned {response.status_code}")


def main():
    parser = argparse.ArgumentParser(description="Verify the indexing pipeline on a live deployment")
    parser.add_argument("project_id", help="ID of an existing project to index")
    parser.add_argument("--branch", help="Branch to index (default: server default)")
    parser.add_argument(
        "--incremental",
        action="store_true",
        help="Only index changes since the last indexed commit",
    )
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help=f"API base URL (default: {DEFAULT_BASE_URL})",
    )
    parser.add_argument("--api-key", help="Value for the X-API-Key header")
    args = parser.parse_args()

    headers = {"X-API-Key": args.api_key} if args.api_key else {}

    print("=" * 60)
    print("  Indexing Orchestrator - Pipeline Verification")
    print("=" * 60)

    with httpx.Client(base_url=args.base_url, headers=headers, timeout=30) as client:
        if not check_health(client):
            print("\n❌ VERIFICATION FAILED: API is not healthy")
            sys.exit(1)

        queued = trigger_indexing(client, args.project_id, args.branch, args.incremental)
        if not queued:
            print("\n❌ VERIFICATION FAILED: Could not queue indexing")
            sys.exit(1)

        job = poll_job(client, queued["job_id"])
        if not job:
            print("\n❌ VERIFICATION FAILED: Job did not complete")
            sys.exit(1)

        if not verify_project(client, args.project_id, job):
            print("\n❌ VERIFICATION FAILED: Project summary is inconsistent")
            sys.exit(1)

        show_queue(client)

    print("\n" + "=" * 60)
    print("  ✅ PIPELINE VERIFICATION COMPLETE")
    print("=" * 60)
    print(f"\n  Project ID: {args.project_id}")
    print(f"  Job ID:     {job['job_id']}")


if __name__ == "__main__":
    main()
