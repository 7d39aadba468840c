#!/usr/bin/env python3
"""Schedule a consultation from the command line.

Times are entered as wall-clock values in the host's timezone and sent to
the API as UTC instants.

Usage:
    python scripts/schedule_consultation.py --host "Dr. Ada" --room Ada-Checkup \\
        --date 2026-10-20 --start 09:00 --end 09:30 --tz Africa/Lagos \\
        --clients alice@example.com,bob@example.com
    python scripts/schedule_consultation.py ... --dry-run   # print the request body only
    python scripts/schedule_consultation.py ... --base-url https://consult.example.com
"""

import argparse
import json
import sys
from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" (24h). Raises ValueError on anything else."""
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
        raise ValueError(f"Invalid time format (HH:MM): {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time format (HH:MM): {value!r}")
    return time(hour, minute)


def to_instant(day: str, hhmm: str, tz_name: str) -> datetime:
    try:
        tz = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as e:
        raise ValueError(f"Unknown timezone: {tz_name!r}") from e
    return datetime.combine(date.fromisoformat(day), parse_hhmm(hhmm), tzinfo=tz)


def build_schedule_payload(
    host: str,
    room: str,
    day: str,
    start: str,
    end: str,
    tz_name: str,
    clients: str,
) -> dict:
    start_at = to_instant(day, start, tz_name)
    end_at = to_instant(day, end, tz_name)
    if end_at <= start_at:
        raise ValueError("End time must be after start time.")
    return {
        "hostName": host,
        "roomName": room,
        "startAt": start_at.isoformat(),
        "endAt": end_at.isoformat(),
        "clientEmails": clients,
    }


def main():
    parser = argparse.ArgumentParser(description="Schedule a consultation room")
    parser.add_argument("--host", required=True, help="Host display name")
    parser.add_argument("--room", required=True, help="Room name (letters, digits, _ and -)")
    parser.add_argument("--date", required=True, help="Consultation date, YYYY-MM-DD")
    parser.add_argument("--start", required=True, help="Start time, HH:MM")
    parser.add_argument("--end", required=True, help="End time, HH:MM")
    parser.add_argument("--tz", default="UTC", help="IANA timezone of the times (default: UTC)")
    parser.add_argument("--clients", required=True, help="Comma-separated client emails")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--dry-run", action="store_true", help="Print the request body and exit")
    args = parser.parse_args()

    try:
        payload = build_schedule_payload(
            args.host, args.room, args.date, args.start, args.end, args.tz, args.clients
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.dry_run:
        print(json.dumps(payload, indent=2))
        return

    try:
        resp = httpx.post(f"{args.base_url.rstrip('/')}/api/consultations", json=payload, timeout=15.0)
    except httpx.HTTPError as e:
        print(f"Error: could not reach {args.base_url}: {e}", file=sys.stderr)
        sys.exit(1)

    body = resp.json()
    if resp.status_code != 201:
        print(f"Error ({resp.status_code}): {body.get('error') or body.get('detail')}", file=sys.stderr)
        sys.exit(1)
    print(f"Scheduled. Join link: {args.base_url.rstrip('/')}{body['joinPath']}")


if __name__ == "__main__":
    main()
