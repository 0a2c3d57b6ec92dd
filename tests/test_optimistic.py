from types import SimpleNamespace

import pytest

from academy.feed_input.optimistic import optimistic_update


@pytest.mark.asyncio
async def test_value_applied_before_request_completes() -> None:
    target = SimpleNamespace(flag=False)
    seen = []

    async def request():
        seen.append(target.flag)
        return "ok"

    assert await optimistic_update(target, "flag", True, request) == "ok"
    assert seen == [True]
    assert target.flag is True


@pytest.mark.asyncio
async def test_failure_restores_snapshot_and_propagates() -> None:
    target = SimpleNamespace(flag=False)

    async def request():
        raise RuntimeError("network down")

    with pytest.raises(RuntimeError):
        await optimistic_update(target, "flag", True, request)
    assert target.flag is False


@pytest.mark.asyncio
async def test_custom_setter_is_used_for_apply_and_restore() -> None:
    target = SimpleNamespace(flag=False)
    calls = []

    def setter(obj, attr, value):
        calls.append(value)
        setattr(obj, attr, value)

    async def request():
        raise ValueError("rejected")

    with pytest.raises(ValueError):
        await optimistic_update(target, "flag", True, request, setter=setter)
    assert calls == [True, False]
