# ratelimit_finder/controller.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from .prober import TrialConfig, TrialResult, run_trial

logger = logging.getLogger(__name__)

DEFAULT_START_RATE = 5
DEFAULT_STEP = 5
DEFAULT_COOLDOWN = 10.0


class Phase(Enum):
    PROBING = "probing"
    ESCALATING = "escalating"
    FOUND = "found"
    # only reachable with a max_rate ceiling
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class EscalationState:
    current_rate: int = DEFAULT_START_RATE
    step: int = DEFAULT_STEP
    phase: Phase = Phase.PROBING

    @property
    def found(self) -> bool:
        return self.phase is Phase.FOUND

    @property
    def done(self) -> bool:
        return self.phase in (Phase.FOUND, Phase.EXHAUSTED)


def decide(state: EscalationState, result: TrialResult) -> EscalationState:
    """PROBING -> FOUND on any throttled response, otherwise -> ESCALATING."""
    if state.phase is not Phase.PROBING:
        raise ValueError(f"cannot decide from {state.phase.name}")
    if result.throttled > 0:
        return replace(state, phase=Phase.FOUND)
    return replace(state, phase=Phase.ESCALATING)


def escalate(state: EscalationState, max_rate: Optional[int] = None) -> EscalationState:
    """ESCALATING(rate) -> PROBING(rate + step), or EXHAUSTED past the ceiling."""
    if state.phase is not Phase.ESCALATING:
        raise ValueError(f"cannot escalate from {state.phase.name}")
    nxt = state.current_rate + state.step
    if max_rate is not None and nxt > max_rate:
        return replace(state, phase=Phase.EXHAUSTED)
    return replace(state, current_rate=nxt, phase=Phase.PROBING)


def fmt_seconds(sec: float) -> str:
    return f"{sec:g}s"


def trial_report(result: TrialResult) -> str:
    return (f"Results: {result.total} total requests ({result.achieved_rate:.1f} req/s actual rate)\n"
            f"  Success: {result.success}, Rate Limited: {result.throttled}, "
            f"Other Errors: {result.other_errors}")


def found_report(rate: int, result: TrialResult) -> str:
    return (f"\nRate limit found at approximately {rate} requests per second\n"
            f"  Successful requests before limit: {result.success}\n"
            f"  Rate limited requests: {result.throttled}\n"
            f"  Achieved rate: {result.achieved_rate:.1f} req/s")


@dataclass
class Outcome:
    state: EscalationState
    result: TrialResult
    trials: int


class EscalationController:
    """
    Drives the prober at increasing rates until a trial sees a 429.

    ``prober`` and ``sleep`` are injectable so the loop can run against canned
    results. With ``max_rate`` left as None the loop never gives up on its own.
    """

    def __init__(self, template: TrialConfig,
                 prober: Callable[[TrialConfig], TrialResult] = run_trial,
                 start_rate: int = DEFAULT_START_RATE, step: int = DEFAULT_STEP,
                 cooldown: float = DEFAULT_COOLDOWN, max_rate: Optional[int] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 out: Callable[[str], None] = print):
        if start_rate <= 0 or step <= 0:
            raise ValueError("start_rate/step must be positive")
        self.template = template
        self.prober = prober
        self.state = EscalationState(current_rate=start_rate, step=step)
        self.cooldown = float(cooldown)
        self.max_rate = max_rate
        self.sleep = sleep
        self.out = out

    def probe_once(self) -> TrialResult:
        rate = self.state.current_rate
        self.out(f"Testing rate: {rate} req/s for {fmt_seconds(self.template.duration)}")
        result = self.prober(replace(self.template, workers=rate))
        self.out(trial_report(result))
        return result

    def run(self) -> Outcome:
        trials = 0
        result = TrialResult()
        if self.max_rate is not None and self.state.current_rate > self.max_rate:
            self.state = replace(self.state, phase=Phase.EXHAUSTED)
        while not self.state.done:
            result = self.probe_once()
            trials += 1
            self.state = decide(self.state, result)
            logger.debug("rate %d -> %s", self.state.current_rate, self.state.phase.name)
            if self.state.found:
                self.out(found_report(self.state.current_rate, result))
                break
            rate = self.state.current_rate
            nxt = escalate(self.state, self.max_rate)
            if nxt.done:
                self.state = nxt
                self.out(f"No rate limit detected up to {rate} req/s (ceiling {self.max_rate} req/s).")
                break
            self.out(f"No rate limit detected at {rate} req/s. "
                     f"Waiting {fmt_seconds(self.cooldown)} before next test...\n")
            self.sleep(self.cooldown)
            self.state = nxt
        return Outcome(state=self.state, result=result, trials=trials)
