import asyncio
import json

import pytest

from phrasegate.errors import RemoteWriteError
from phrasegate.policy import PolicyGuard, WritePolicy, firebase_rules, main, supabase_sql


def test_firebase_rules_write_clause_per_policy():
    assert firebase_rules(WritePolicy.OPEN)["rules"]["submissions"][".write"] is True
    assert firebase_rules(WritePolicy.AUTHENTICATED)["rules"]["submissions"][".write"] == "auth.uid != null"
    limited = firebase_rules(WritePolicy.RATE_LIMITED, rate_limit=3)["rules"]
    assert limited["submissions"][".write"] == "root.child('rateLimit').child(auth.uid).val() < 3"
    assert "rateLimit" in limited
    assert firebase_rules(WritePolicy.CLOSED)["rules"]["submissions"][".write"] is False


def test_firebase_rules_validate_fields_and_public_read():
    subs = firebase_rules(WritePolicy.OPEN)["rules"]["submissions"]
    assert subs[".read"] is True
    assert subs[".indexOn"] == ["timestamp"]
    assert subs["$id"]["verified"][".validate"] == "newData.val() === true"
    assert "length <= 50" in subs["$id"]["discord"][".validate"]


def test_supabase_sql_per_policy():
    assert "to anon, authenticated" in supabase_sql(WritePolicy.OPEN)
    assert "user_id = auth.uid()" in supabase_sql(WritePolicy.AUTHENTICATED)
    assert "< 7" in supabase_sql(WritePolicy.RATE_LIMITED, rate_limit=7)
    closed = supabase_sql(WritePolicy.CLOSED)
    assert "for insert" not in closed
    assert "enable row level security" in closed


def test_guard_open_and_closed():
    asyncio.run(PolicyGuard(WritePolicy.OPEN).check_write(None))
    with pytest.raises(RemoteWriteError):
        asyncio.run(PolicyGuard(WritePolicy.CLOSED).check_write("someone"))


def test_guard_refuses_authenticated_policy():
    # No sign-in exists in process, so the policy is only valid on hosted backings.
    with pytest.raises(ValueError):
        PolicyGuard(WritePolicy.AUTHENTICATED)


def test_guard_rate_limit_denies_unknown_client():
    guard = PolicyGuard(WritePolicy.RATE_LIMITED)
    with pytest.raises(RemoteWriteError) as exc:
        asyncio.run(guard.check_write(None))
    assert "Permission denied" in str(exc.value)


def test_guard_rate_limit_is_per_identity():
    guard = PolicyGuard(WritePolicy.RATE_LIMITED, rate_limit=2)

    async def run():
        await guard.check_write("a")
        await guard.check_write("a")
        await guard.check_write("b")
        with pytest.raises(RemoteWriteError):
            await guard.check_write("a")

    asyncio.run(run())


def test_guard_forgets_clients_outside_the_window():
    guard = PolicyGuard(WritePolicy.RATE_LIMITED, rate_limit=1, window=0.05)

    async def run():
        await guard.check_write("10.0.0.1")
        await guard.check_write("10.0.0.2")
        assert set(guard._writes) == {"10.0.0.1", "10.0.0.2"}
        await asyncio.sleep(0.1)
        await guard.check_write("10.0.0.3")
        assert set(guard._writes) == {"10.0.0.3"}
        # The expired client may write again.
        await guard.check_write("10.0.0.1")

    asyncio.run(run())


def test_cli_prints_rules(capsys):
    main(["--backend", "firebase", "--policy", "authenticated"])
    doc = json.loads(capsys.readouterr().out)
    assert doc["rules"]["submissions"][".write"] == "auth.uid != null"

    main(["--backend", "supabase", "--policy", "closed"])
    assert "create table if not exists public.submissions" in capsys.readouterr().out
