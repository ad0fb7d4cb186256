"""
Write policies for the submissions collection.

The hosted backings enforce access with their own declarative rules; this
module renders those rules for a deployer to paste into the console, and
enforces the same policy for the backings this process writes to directly.

Run ``phrasegate-rules --backend firebase --policy authenticated`` to print a
rule set.
"""

import argparse
import asyncio
import json
import time
from collections import defaultdict, deque
from enum import Enum
from typing import Optional

from .errors import RemoteWriteError

RATE_LIMIT_WINDOW = 60 * 60


class WritePolicy(str, Enum):
    OPEN = "open"
    AUTHENTICATED = "authenticated"
    RATE_LIMITED = "rate_limited"
    CLOSED = "closed"


def _write_rule(policy: WritePolicy, rate_limit: int):
    if policy is WritePolicy.OPEN:
        return True
    if policy is WritePolicy.AUTHENTICATED:
        return "auth.uid != null"
    if policy is WritePolicy.RATE_LIMITED:
        return f"root.child('rateLimit').child(auth.uid).val() < {rate_limit}"
    return False


def firebase_rules(policy: WritePolicy, rate_limit: int = 5) -> dict:
    """Realtime Database rules document for ``policy``."""
    submissions = {
        ".read": True,
        ".write": _write_rule(policy, rate_limit),
        ".indexOn": ["timestamp"],
    }
    if policy is not WritePolicy.CLOSED:
        submissions["$id"] = {
            "discord": {
                ".validate": "newData.isString() && newData.val().length > 0 && newData.val().length <= 50"
            },
            "phrase": {
                ".validate": "newData.isString() && newData.val().length > 0"
            },
            "timestamp": {
                ".validate": "newData.isString() && newData.val().matches(/^\\d{4}-\\d{2}-\\d{2}T\\d{2}:\\d{2}:\\d{2}/)"
            },
            "verified": {
                ".validate": "newData.val() === true"
            },
            ".validate": "newData.hasChildren(['discord', 'phrase', 'timestamp', 'verified'])",
        }
    rules = {"submissions": submissions}
    if policy is WritePolicy.RATE_LIMITED:
        rules["rateLimit"] = {
            "$uid": {
                ".read": "$uid === auth.uid",
                ".write": "$uid === auth.uid",
            }
        }
    return {"rules": rules}


_TABLE_SQL = """\
create table if not exists public.submissions (
    id bigint generated always as identity primary key,
    username text not null check (char_length(username) between 1 and 50),
    phrase text not null check (char_length(phrase) > 0),
    timestamp timestamptz not null default now(),
    verified boolean not null default true check (verified),
    user_id uuid default auth.uid()
);
create index if not exists submissions_timestamp_idx on public.submissions (timestamp);
alter table public.submissions enable row level security;

create policy "submissions are public" on public.submissions
    for select using (verified);
"""


def supabase_sql(policy: WritePolicy, rate_limit: int = 5) -> str:
    """Postgres table and row level security policies for ``policy``."""
    if policy is WritePolicy.OPEN:
        insert = (
            'create policy "anyone can submit" on public.submissions\n'
            "    for insert to anon, authenticated with check (verified);\n"
        )
    elif policy is WritePolicy.AUTHENTICATED:
        insert = (
            'create policy "signed in users can submit" on public.submissions\n'
            "    for insert to authenticated with check (verified and user_id = auth.uid());\n"
        )
    elif policy is WritePolicy.RATE_LIMITED:
        insert = (
            'create policy "signed in users can submit a few times" on public.submissions\n'
            "    for insert to authenticated with check (\n"
            "        verified and user_id = auth.uid()\n"
            "        and (select count(*) from public.submissions s where s.user_id = auth.uid()) < "
            f"{rate_limit}\n"
            "    );\n"
        )
    else:
        insert = "-- closed: no insert policy, so row level security rejects every write.\n"
    return _TABLE_SQL + "\n" + insert


class PolicyGuard:
    """
    Enforces a write policy in process, keyed by the writer's client address.

    Session ids are free to mint, so they never count as an identity here.
    This process has no sign-in either, so "authenticated" is left to the
    hosted backings that have one.
    """

    def __init__(self, policy: WritePolicy, rate_limit: int = 5, window: float = RATE_LIMIT_WINDOW):
        if policy is WritePolicy.AUTHENTICATED:
            raise ValueError("The authenticated policy needs a hosted backend with sign-in (supabase or firebase)")
        self.policy = policy
        self.rate_limit = rate_limit
        self.window = window
        self._writes = defaultdict(deque)
        self._lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        # Drop writes outside the window, and any client left with none.
        for identity in list(self._writes):
            history = self._writes[identity]
            while history and history[0] < now - self.window:
                history.popleft()
            if not history:
                del self._writes[identity]

    async def check_write(self, identity: Optional[str]) -> None:
        if self.policy is WritePolicy.OPEN:
            return
        if self.policy is WritePolicy.CLOSED:
            raise RemoteWriteError("Permission denied")
        if not identity:
            raise RemoteWriteError("Permission denied: unknown client")
        if self.policy is WritePolicy.RATE_LIMITED:
            now = time.time()
            async with self._lock:
                self._expire(now)
                history = self._writes[identity]
                if len(history) >= self.rate_limit:
                    raise RemoteWriteError("Permission denied: too many submissions, try again later")
                history.append(now)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Print access rules for the submissions collection.")
    parser.add_argument("--backend", choices=["firebase", "supabase"], default="firebase")
    parser.add_argument("--policy", choices=[p.value for p in WritePolicy], default=WritePolicy.OPEN.value)
    parser.add_argument("--rate-limit", type=int, default=5, help="writes per user for rate_limited")
    args = parser.parse_args(argv)

    policy = WritePolicy(args.policy)
    if args.backend == "firebase":
        print(json.dumps(firebase_rules(policy, args.rate_limit), indent=2))
    else:
        print(supabase_sql(policy, args.rate_limit))


if __name__ == "__main__":
    main()
