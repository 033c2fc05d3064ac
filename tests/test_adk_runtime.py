from dataclasses import dataclass, field
from typing import List

import pytest

from partsbot.adk_runtime import AdkAgent, AdkStep


@dataclass
class Ctx:
    trace: List[str] = field(default_factory=list)
    halted: bool = False


def record(name, halt=False):
    def fn(ctx):
        ctx.trace.append(name)
        if halt:
            ctx.halted = True

    return fn


def test_steps_run_in_order_and_skip_if_is_honoured():
    agent = AdkAgent(
        [
            AdkStep("a", record("a")),
            AdkStep("b", record("b"), skip_if=lambda ctx: True),
            AdkStep("c", record("c")),
        ]
    )
    ctx = Ctx()
    assert agent.run(ctx) == ["a", "c"]
    assert ctx.trace == ["a", "c"]
    assert agent.step_names == ["a", "b", "c"]


def test_halt_skips_everything_but_always_run():
    agent = AdkAgent(
        [
            AdkStep("lookup", record("lookup", halt=True)),
            AdkStep("expensive", record("expensive")),
            AdkStep("actions", record("actions"), skip_if=lambda ctx: True, always_run=True),
        ]
    )
    ctx = Ctx()
    assert agent.run(ctx) == ["lookup", "actions"]


def test_step_errors_propagate():
    def explode(ctx):
        raise RuntimeError("boom")

    agent = AdkAgent([AdkStep("a", record("a")), AdkStep("b", explode), AdkStep("c", record("c"))])
    ctx = Ctx()
    with pytest.raises(RuntimeError):
        agent.run(ctx)
    assert ctx.trace == ["a"]


def test_duplicate_step_names_are_rejected():
    with pytest.raises(ValueError):
        AdkAgent([AdkStep("a", record("a")), AdkStep("a", record("a"))])
