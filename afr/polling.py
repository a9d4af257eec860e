from __future__ import annotations

import time
from threading import Event
from typing import Callable, TypeVar

T = TypeVar("T")


class PollTimeout(Exception):
    def __init__(self, ticks: int, waited_s: float, last_error: BaseException | None = None):
        msg = f"condition not met after {ticks} checks ({waited_s:g}s)"
        if last_error is not None:
            msg += f"; last error: {last_error}"
        super().__init__(msg)
        self.ticks = ticks
        self.waited_s = waited_s
        self.last_error = last_error


class PollCancelled(Exception):
    pass


def poll_until(
    probe: Callable[[], T],
    *,
    interval_s: float,
    budget_s: float,
    retry_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    stop: Event | None = None,
    on_retry: Callable[[BaseException, int], None] | None = None,
) -> T:
    """Call ``probe`` every ``interval_s`` until it returns something truthy.

    Each tick waits first, then probes. Ticks run while the accumulated
    wait is below ``budget_s``. Exceptions listed in ``retry_on`` count as
    a failed tick; anything else propagates. Raises PollTimeout when the
    budget is spent, PollCancelled when ``stop`` is set.
    """
    interval_s = max(0.001, float(interval_s))
    waited = 0.0
    ticks = 0
    last_error: BaseException | None = None

    while waited < budget_s:
        if stop is not None:
            if stop.wait(interval_s):
                raise PollCancelled(f"stopped after {ticks} checks")
        else:
            sleep(interval_s)
        waited += interval_s
        ticks += 1

        try:
            result = probe()
        except retry_on as e:
            last_error = e
            if on_retry is not None:
                on_retry(e, ticks)
            continue
        last_error = None
        if result:
            return result

    raise PollTimeout(ticks, waited, last_error)
