import pytest

from tagloop.keys import KeyPool, mask_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _pool(keys=("key-aaaaaaaaaa", "key-bbbbbbbbbb"), models=("m1", "m2"), clock=None):  # noqa: ANN001, ANN202
    return KeyPool(keys, models, minute_block_seconds=120, day_block_seconds=86400, clock=clock or FakeClock())


def test_requires_a_key():
    with pytest.raises(ValueError):
        KeyPool([])


def test_rate_limit_rotates_to_next_key():
    pool = _pool()
    first = pool.current()

    assert pool.mark_rate_limited(first)

    second = pool.current()
    assert (second.key_index, second.model) == (1, "m1")


def test_stale_credential_does_not_rotate_twice():
    pool = _pool()
    first = pool.current()

    pool.mark_rate_limited(first)
    assert pool.mark_rate_limited(first)

    assert pool.current().key_index == 1
    assert [status.available for status in pool.status()] == [False, True]


def test_all_keys_limited_falls_back_to_next_model():
    pool = _pool()

    pool.mark_rate_limited(pool.current())
    assert pool.mark_rate_limited(pool.current())

    current = pool.current()
    assert (current.key_index, current.model) == (0, "m2")


def test_blocked_model_is_restored_after_expiry():
    clock = FakeClock()
    pool = _pool(clock=clock)
    pool.mark_rate_limited(pool.current())
    pool.mark_rate_limited(pool.current())
    assert pool.current().model == "m2"

    clock.now += 121

    assert pool.current().model == "m1"


def test_second_strike_blocks_key_for_a_day():
    clock = FakeClock()
    pool = _pool(models=("m1",), clock=clock)
    pool.mark_rate_limited(pool.current())
    clock.now += 121
    pool.mark_rate_limited(pool.current())
    # Key 0 is available again after its minute block.
    pool.mark_rate_limited(pool.current())

    assert pool.status()[0].strikes == 2
    clock.now += 3600
    assert not pool.status()[0].available


def test_single_key_cannot_rotate():
    pool = _pool(keys=("only-key-123456",), models=("m1",))

    assert not pool.rotate(pool.current())
    assert not pool.mark_rate_limited(pool.current())


def test_permission_denied_blocks_and_rotates():
    clock = FakeClock()
    pool = _pool(clock=clock)

    assert pool.mark_permission_denied(pool.current())

    assert pool.current().key_index == 1
    clock.now += 86400 * 2
    assert not pool.status()[0].available


def test_reset_restores_first_key():
    pool = _pool()
    pool.mark_rate_limited(pool.current())

    pool.reset()

    assert pool.current().key_index == 0
    assert all(status.available for status in pool.status())


def test_mask_key():
    assert mask_key("sk-or-v1-abcdef123456") == "sk-or-v1...3456"
    assert mask_key("short") == "***"
