"""Conversion funnel counters."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Literal

Stage = Literal["started", "completed"]
StepUpStage = Literal["triggered", "completed"]

PASSKEY = "passkey"
PASSWORD = "password"


@dataclass
class MethodFunnel:
    started: int = 0
    completed: int = 0

    @property
    def rate(self) -> float:
        if self.started == 0:
            return 0.0
        return self.completed / self.started


@dataclass
class ConversionSnapshot:
    methods: Dict[str, MethodFunnel]
    stepup_triggered: int
    stepup_completed: int
    passkey_method: str = PASSKEY
    password_method: str = PASSWORD
    extra: Dict[str, object] = field(default_factory=dict)

    @property
    def delta(self) -> float:
        return self._funnel(self.passkey_method).rate - self._funnel(self.password_method).rate

    def _funnel(self, method: str) -> MethodFunnel:
        return self.methods.get(method, MethodFunnel())

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {}
        for method in sorted(set(self.methods) | {self.passkey_method, self.password_method}):
            funnel = self._funnel(method)
            payload[method] = {
                "started": funnel.started,
                "completed": funnel.completed,
                "conversionRate": f"{funnel.rate * 100:.2f}%",
            }
        delta = self.delta
        payload["delta"] = {
            "percentage": f"{delta * 100:.2f}%",
            "improvement": (
                "Passkeys improve conversion" if delta > 0 else "Passkeys reduce conversion"
            ),
        }
        payload["stepUpAuth"] = {
            "triggered": self.stepup_triggered,
            "completed": self.stepup_completed,
        }
        payload.update(self.extra)
        return payload


class ConversionCounter:
    """Thread-safe in-process funnel counters; reset only on restart."""

    def __init__(self, methods: Iterable[str] = (PASSKEY, PASSWORD)) -> None:
        self._lock = threading.Lock()
        self._started: Dict[str, int] = defaultdict(int)
        self._completed: Dict[str, int] = defaultdict(int)
        self._stepup: Dict[str, int] = {"triggered": 0, "completed": 0}
        for method in methods:
            self._started[method] += 0
            self._completed[method] += 0

    def increment(self, stage: Stage, method: str) -> int:
        with self._lock:
            if stage == "started":
                self._started[method] += 1
                return self._started[method]
            if stage == "completed":
                self._completed[method] += 1
                return self._completed[method]
        raise ValueError(f"Unknown funnel stage: {stage}")

    def increment_stepup(self, stage: StepUpStage) -> int:
        with self._lock:
            if stage not in self._stepup:
                raise ValueError(f"Unknown step-up stage: {stage}")
            self._stepup[stage] += 1
            return self._stepup[stage]

    def funnel(self, method: str) -> MethodFunnel:
        with self._lock:
            return MethodFunnel(self._started.get(method, 0), self._completed.get(method, 0))

    def rate(self, method: str) -> float:
        return self.funnel(method).rate

    def delta(self, passkey_method: str = PASSKEY, password_method: str = PASSWORD) -> float:
        return self.rate(passkey_method) - self.rate(password_method)

    def snapshot(self) -> ConversionSnapshot:
        with self._lock:
            methods = {
                method: MethodFunnel(self._started.get(method, 0), self._completed.get(method, 0))
                for method in set(self._started) | set(self._completed)
            }
            return ConversionSnapshot(
                methods=methods,
                stepup_triggered=self._stepup["triggered"],
                stepup_completed=self._stepup["completed"],
            )
