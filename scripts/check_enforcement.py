#!/usr/bin/env python3
"""
Project Hub - Enforcement Check
Probes a running deployment for the access and task-workflow guarantees:
unauthenticated project requests are refused, illegal task transitions are
refused with a machine-readable body, and legal ones land in the audit feed
under the caller's request id.

Usage:
    python scripts/check_enforcement.py --base-url http://localhost:8000
    python scripts/check_enforcement.py --base-url https://hub.example.com --token "$TOKEN"
    python scripts/check_enforcement.py --token "$TOKEN" --keep-project

Exit status is 0 when every check passes, 1 otherwise.
"""

import sys
import uuid
import argparse
from typing import Optional

import httpx


# ── Output ──────────────────────────────────────────────────

class Report:
    def __init__(self):
        self.failed = 0

    def ok(self, message: str):
        print(f"  PASS  {message}")

    def fail(self, message: str, response: Optional[httpx.Response] = None):
        self.failed += 1
        detail = f" [{response.status_code}] {response.text[:200]}" if response is not None else ""
        print(f"  FAIL  {message}{detail}")

    def check(self, condition: bool, message: str, response: Optional[httpx.Response] = None) -> bool:
        if condition:
            self.ok(message)
        else:
            self.fail(message, response)
        return condition


# ── Checks ──────────────────────────────────────────────────

def check_unauthenticated(client: httpx.Client, report: Report, project_id: str):
    print("Unauthenticated access")
    r = client.get(f"/api/projects/{project_id}/tasks")
    report.check(
        r.status_code == 401 and r.json().get("error") == "Authentication required",
        "project-scoped list without credentials → 401",
        r,
    )


def check_task_workflow(client: httpx.Client, report: Report, headers: dict, keep_project: bool):
    print("Task workflow (authenticated)")
    r = client.post("/api/projects", json={"name": f"enforcement-check-{uuid.uuid4().hex[:8]}"}, headers=headers)
    if not report.check(r.status_code == 201, "create scratch project", r):
        return
    project_id = r.json()["id"]

    try:
        r = client.post(f"/api/projects/{project_id}/tasks", json={"title": "enforcement probe"}, headers=headers)
        if not report.check(r.status_code == 201 and r.json().get("status") == "todo", "create task in todo", r):
            return
        task_url = f"/api/projects/{project_id}/tasks/{r.json()['id']}"

        r = client.patch(task_url, json={"status": "done"}, headers=headers)
        body = r.json() if r.headers.get("content-type", "").startswith("application/json") else {}
        report.check(
            r.status_code == 409
            and body.get("invalid_transition") is True
            and body.get("from") == "todo"
            and body.get("to") == "done",
            "todo → done refused with 409 {invalid_transition, from, to}",
            r,
        )

        request_id = f"enforcement-{uuid.uuid4()}"
        r = client.patch(task_url, json={"status": "in_progress"}, headers={**headers, "X-Request-ID": request_id})
        if not report.check(r.status_code == 200 and r.json().get("status") == "in_progress", "todo → in_progress accepted", r):
            return

        r = client.get(f"/api/projects/{project_id}/audit", params={"limit": 50}, headers=headers)
        entries = r.json().get("audit", []) if r.status_code == 200 else []
        match = next((e for e in entries if e.get("request_id") == request_id), None)
        details = (match or {}).get("details") or {}
        report.check(
            match is not None
            and details.get("before", {}).get("status") == "todo"
            and details.get("after", {}).get("status") == "in_progress",
            "audit entry carries the request id and before/after status",
            r,
        )
    finally:
        if not keep_project:
            r = client.delete(f"/api/projects/{project_id}", headers=headers)
            if r.status_code != 200:
                print(f"  WARN  could not delete scratch project {project_id} [{r.status_code}]")


# ── Main ────────────────────────────────────────────────────

def main() -> int:
    parser = argparse.ArgumentParser(description="Check access and task-workflow enforcement on a running Project Hub")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--token", help="Bearer token for the authenticated checks")
    parser.add_argument("--project-id", default="00000000-0000-0000-0000-000000000000",
                        help="Project id used for the unauthenticated probe")
    parser.add_argument("--keep-project", action="store_true", help="Do not delete the scratch project")
    parser.add_argument("--timeout", type=float, default=15.0)
    args = parser.parse_args()

    report = Report()
    try:
        with httpx.Client(base_url=args.base_url.rstrip("/"), timeout=args.timeout) as client:
            check_unauthenticated(client, report, args.project_id)
            if args.token:
                check_task_workflow(client, report, {"Authorization": f"Bearer {args.token}"}, args.keep_project)
            else:
                print("Task workflow skipped (no --token)")
    except httpx.HTTPError as e:
        print(f"Cannot reach {args.base_url}: {e}")
        return 1

    print(f"\n{'All checks passed' if report.failed == 0 else f'{report.failed} check(s) failed'}")
    return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
