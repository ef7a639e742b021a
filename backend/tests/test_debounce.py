import asyncio

from services.debounce import CancelToken, DebouncedQuery, QueryState


class Recorder:
    def __init__(self, delays=None):
        self.calls = []
        self.tokens = []
        self.results = []
        self.delays = delays or {}

    async def runner(self, value, token):
        self.calls.append(value)
        self.tokens.append(token)
        await asyncio.sleep(self.delays.get(value, 0))
        return f"result:{value}"

    def on_result(self, value, result):
        self.results.append((value, result))


def test_cancel_token_flags():
    token = CancelToken(7)
    assert token.seq == 7
    assert not token.aborted
    token.cancel()
    assert token.aborted
    assert CancelToken().seq != CancelToken().seq


def test_keystrokes_within_quiet_period_fire_once():
    rec = Recorder()

    async def scenario():
        q = DebouncedQuery(rec.runner, rec.on_result, quiet_period=0.02)
        q.push("m")
        q.push("me")
        assert q.state is QueryState.TYPING
        await asyncio.sleep(0.005)
        q.push("mer")
        await asyncio.sleep(0.08)
        return q

    q = asyncio.run(scenario())
    assert rec.calls == ["mer"]
    assert rec.results == [("mer", "result:mer")]
    assert q.state is QueryState.IDLE
    assert q.last_fired == "mer"


def test_same_text_does_not_refire():
    rec = Recorder()

    async def scenario():
        q = DebouncedQuery(rec.runner, rec.on_result, quiet_period=0.01)
        q.push("merced")
        await asyncio.sleep(0.05)
        q.push("merced")
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert rec.calls == ["merced"]


def test_fire_now_bypasses_timer_and_always_fires():
    rec = Recorder()

    async def scenario():
        q = DebouncedQuery(rec.runner, rec.on_result, quiet_period=10.0)
        q.push("merc")
        first = await q.fire_now("merced")
        second = await q.fire_now("merced")
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == "result:merced"
    assert rec.calls == ["merced", "merced"]


def test_newer_query_cancels_older_and_only_latest_is_applied():
    # A is slow, B is fast: B resolves first, A's late answer must be dropped.
    rec = Recorder(delays={"A": 0.08, "B": 0.0})

    async def scenario():
        q = DebouncedQuery(rec.runner, rec.on_result, quiet_period=0.0)
        task_a = asyncio.ensure_future(q.fire_now("A"))
        await asyncio.sleep(0.01)
        result_b = await q.fire_now("B")
        result_a = await task_a
        return result_a, result_b

    result_a, result_b = asyncio.run(scenario())
    assert result_a is None
    assert result_b == "result:B"
    assert rec.results == [("B", "result:B")]
    assert rec.tokens[0].aborted
    assert not rec.tokens[1].aborted
    assert rec.tokens[1].seq > rec.tokens[0].seq


def test_late_arrival_of_superseded_debounced_query_is_dropped():
    rec = Recorder(delays={"A": 0.06, "B": 0.0})

    async def scenario():
        q = DebouncedQuery(rec.runner, rec.on_result, quiet_period=0.005)
        q.push("A")
        await asyncio.sleep(0.02)  # A is now in flight
        assert q.state is QueryState.QUERYING
        q.push("B")
        await asyncio.sleep(0.12)

    asyncio.run(scenario())
    assert rec.calls == ["A", "B"]
    assert rec.results == [("B", "result:B")]


def test_close_cancels_pending_and_inflight_work():
    rec = Recorder(delays={"A": 0.05})

    async def scenario():
        q = DebouncedQuery(rec.runner, rec.on_result, quiet_period=0.005)
        q.push("A")
        await asyncio.sleep(0.02)
        q.close()
        q.push("B")
        await asyncio.sleep(0.08)
        late = await q.fire_now("C")
        return q, late

    q, late = asyncio.run(scenario())
    assert rec.results == []
    assert rec.tokens[0].aborted
    assert late is None
    assert q.state is QueryState.IDLE
    assert q.closed


def test_runner_errors_in_background_are_logged_not_raised(caplog):
    async def failing(value, token):
        raise RuntimeError("kaboom")

    async def scenario():
        q = DebouncedQuery(failing, quiet_period=0.0, name="search")
        q.push("x")
        await asyncio.sleep(0.02)
        return q

    q = asyncio.run(scenario())
    assert q.state is QueryState.IDLE
    assert "debounced query" in caplog.text
