#!/usr/bin/env python3
"""
Drive the API end to end: create a group, fill one roster, assign roles,
then poll until the explanations arrive.
Run with the API already up: uvicorn teamroles.api:app --reload --port 8000

  export ORACLE_API_KEY=your-openrouter-api-key-here
  python3 scripts/try_assign.py
"""
from __future__ import annotations

import json
import time

import httpx

BASE = "http://127.0.0.1:8000"

MEMBERS = [
    ("Ada", "Software Engineer", ["Python", "Distributed systems"], ["Analytical", "Calm"]),
    ("Ben", "Product Manager", ["Roadmapping", "Stakeholder management"], ["Decisive", "Outgoing"]),
    ("Chloe", "Graphic Designer", ["Illustration", "Branding"], ["Creative", "Curious"]),
    ("Dev", "Management Consultant", ["Market analysis", "Negotiation"], ["Strategic", "Patient"]),
    ("Eve", "Data Scientist", ["Statistics", "SQL"], ["Detail-oriented", "Skeptical"]),
    ("Farid", "Operations Lead", ["Scheduling", "Logistics"], ["Organized", "Reliable"]),
    ("Gwen", "QA Engineer", ["Test automation", "Root cause analysis"], ["Meticulous", "Honest"]),
    ("Hiro", "Journalist", ["Writing", "Public speaking"], ["Articulate", "Empathetic"]),
    ("Ines", "Accountant", ["Budgeting", "Forecasting"], ["Prudent", "Methodical"]),
    ("Jon", "Startup Founder", ["Prototyping", "Fundraising"], ["Bold", "Restless"]),
]


def main() -> None:
    client = httpx.Client(timeout=120.0)
    try:
        g = client.post(f"{BASE}/groups", json={"name": "Demo workshop", "max_rosters": 1})
        g.raise_for_status()
        group = g.json()
        roster_id = group["rosters"][0]["id"]
        print(f"Group {group['group']['name']} (join code {group['group']['join_code']}), roster {roster_id[:8]}...")

        for name, occupation, skills, traits in MEMBERS:
            r = client.post(
                f"{BASE}/rosters/{roster_id}/members",
                json={"name": name, "occupation": occupation, "skills": skills, "traits": traits},
            )
            r.raise_for_status()
        print(f"Added {len(MEMBERS)} members")

        a = client.post(f"{BASE}/assign", json={"roster_id": roster_id})
        if a.status_code != 200:
            print("Server error response:", a.text[:500])
        a.raise_for_status()
        out = a.json()
        session_id = out["session_id"]
        print(f"Session {session_id}: total score {out['result']['total_score']:.0f}")

        for _ in range(60):
            s = client.get(f"{BASE}/sessions/{session_id}")
            s.raise_for_status()
            session = s.json()
            if session["status"] == "complete":
                break
            time.sleep(1.0)
        print(f"--- Assignment ({session['status']}) ---")
        for d in session.get("details") or []:
            print(f"{d['member']['name']:>6} -> {d['role']['name']:<22} {d['score']:>5.0f}  {d['explanation'] or ''}")
        print("--- Stats ---")
        print(json.dumps(session.get("stats"), indent=2))
    finally:
        client.close()


if __name__ == "__main__":
    main()
