"""
자격증명 풀 테스트 (교체 / 쿨다운 / 점증 백오프 / 자체 제한)
"""
import asyncio

import pytest

from service.credential_service import CredentialPool, mask_key, parse_retry_after


def _pool(clock, size=3, **kwargs):
    return CredentialPool([f"key-test-{i:04d}" for i in range(size)], clock=clock, **kwargs)


@pytest.mark.parametrize("hint, expected", [
    ("30s", 30.0),
    ("1.5s", 1.5),
    ("500ms", 0.5),
    ("2m", 120.0),
    ("1h", 3600.0),
    ("30", 30.0),
    (45, 45.0),
    (None, 60.0),
    ("soon", 60.0),
    (0, 60.0),
    ("0s", 60.0),
])
def test_재시도_힌트_해석(hint, expected):
    assert parse_retry_after(hint) == expected


def test_키_마스킹():
    assert mask_key("key-primary-0001") == "key-…0001"
    assert mask_key("short") == "****"


@pytest.mark.parametrize("size", [1, 2, 4])
def test_모든_키가_쿨다운이면_교체는_False로_종료(clock, size):
    pool = _pool(clock, size)

    async def scenario():
        for slot in pool.slots:
            await pool.mark_exceeded(slot, "30s")
        return await pool.rotate(), await pool.select_active()

    rotated, active = asyncio.run(scenario())
    assert rotated is False
    assert active is None


def test_빈_풀은_선택_불가(clock):
    pool = CredentialPool([], clock=clock)

    async def scenario():
        return await pool.select_active(), await pool.rotate()

    assert asyncio.run(scenario()) == (None, False)


def test_미사용_키를_먼저_고름(clock):
    pool = _pool(clock, 3)

    async def scenario():
        first = await pool.select_active()
        await pool.record_usage(first, 100, 50)
        await pool.mark_exceeded(first, "30s")
        await pool.rotate()
        second = pool.active_index

        await pool.record_usage(pool.slots[second], 100, 50)
        await pool.mark_exceeded(pool.slots[second], "30s")
        await pool.rotate()
        return second, pool.active_index

    assert asyncio.run(scenario()) == (1, 2)


def test_전부_사용된_키면_라운드로빈(clock):
    pool = _pool(clock, 3)

    async def scenario():
        for slot in pool.slots:
            await pool.record_usage(slot, 10, 10)
        order = []
        for _ in range(3):
            assert await pool.rotate()
            order.append(pool.active_index)
        return order

    assert asyncio.run(scenario()) == [1, 2, 0]


def test_연속_에러는_점증_백오프(clock):
    pool = _pool(clock, 2)
    slot = pool.slots[0]

    async def scenario():
        first = await pool.mark_exceeded(slot, "30s")
        second = await pool.mark_exceeded(slot, "30s")
        return first, second

    first, second = asyncio.run(scenario())
    assert first == 30.0
    assert second == 60.0
    assert slot.cooldown_until == clock() + 60.0
    assert slot.consecutive_errors == 2


def test_같은_에러를_두_요청이_보고해도_한_번만_반영하고_교체도_한_번(clock):
    pool = _pool(clock, 3)
    failed = pool.slots[0]

    async def scenario():
        first = await pool.mark_exceeded_and_rotate(failed, "30s")
        second = await pool.mark_exceeded_and_rotate(failed, "30s")
        return first, second

    (first_slot, first_rotated), (second_slot, second_rotated) = asyncio.run(scenario())
    assert (first_slot.index, first_rotated) == (1, True)
    assert (second_slot.index, second_rotated) == (1, False)
    assert pool.active_index == 1
    assert failed.consecutive_errors == 1
    assert failed.cooldown_until == clock() + 30.0


def test_쿨다운이_끝난_뒤의_에러는_다시_백오프(clock):
    pool = _pool(clock, 2)
    failed = pool.slots[0]

    async def scenario():
        await pool.mark_exceeded_and_rotate(failed, "30s", rotate=False)
        clock.advance(31)
        await pool.mark_exceeded_and_rotate(failed, "30s", rotate=False)

    asyncio.run(scenario())
    assert failed.consecutive_errors == 2
    assert failed.cooldown_until == clock() + 60.0


def test_교체할_키가_없으면_None(clock):
    pool = _pool(clock, 1)

    async def scenario():
        return await pool.mark_exceeded_and_rotate(pool.slots[0], "30s")

    assert asyncio.run(scenario()) == (None, False)


def test_성공하면_에러_횟수_초기화(clock):
    pool = _pool(clock, 2)
    slot = pool.slots[0]

    async def scenario():
        await pool.mark_exceeded(slot, "30s")
        await pool.record_success(slot)
        return await pool.mark_exceeded(slot, "30s")

    assert asyncio.run(scenario()) == 30.0


def test_쿨다운_지나면_다시_사용(clock):
    pool = _pool(clock, 1)
    slot = pool.slots[0]

    async def scenario():
        await pool.mark_exceeded(slot, "30s")
        assert await pool.select_active() is None
        clock.advance(31)
        return await pool.select_active()

    assert asyncio.run(scenario()) is slot
    assert slot.quota_exceeded is False


def test_토큰_임계치_넘으면_자체_쿨다운(clock):
    pool = _pool(clock, 2)
    slot = pool.slots[0]

    async def scenario():
        await pool.record_usage(slot, 4000, 1500)

    asyncio.run(scenario())
    assert slot.usable(clock()) is False
    assert slot.cooldown_until == clock() + 15.0
    # 에러가 아니므로 쿼터 초과 표시는 없음
    assert slot.quota_exceeded is False
    clock.advance(16)
    assert slot.usable(clock()) is True


def test_요청_임계치_넘으면_자체_쿨다운(clock):
    pool = _pool(clock, 2)
    slot = pool.slots[0]

    async def scenario():
        for _ in range(5):
            await pool.record_usage(slot, 10, 10)
        under = slot.usable(clock())
        await pool.record_usage(slot, 10, 10)
        return under, slot.usable(clock())

    assert asyncio.run(scenario()) == (True, False)


def test_남은_예산과_창_초기화(clock):
    pool = _pool(clock, 1)
    slot = pool.slots[0]

    async def scenario():
        await pool.record_usage(slot, 700, 300)
        before = await pool.remaining_budget(slot)
        reset_in = await pool.seconds_until_window_reset(slot)
        clock.advance(61)
        after = await pool.remaining_budget(slot)
        return before, reset_in, after

    assert asyncio.run(scenario()) == (4000, 60, 5000)


def test_가장_빨리_풀리는_키까지_대기시간(clock):
    pool = _pool(clock, 2)

    async def scenario():
        await pool.mark_exceeded(pool.slots[0], "30s")
        await pool.mark_exceeded(pool.slots[1], "10s")
        return await pool.seconds_until_available()

    assert asyncio.run(scenario()) == 10


def test_스냅샷은_키를_가림(clock):
    pool = _pool(clock, 2)
    snapshot = pool.snapshot()

    assert [item["slot"] for item in snapshot] == [0, 1]
    assert snapshot[0]["active"] is True
    assert "key-test-0000" not in str(snapshot)
