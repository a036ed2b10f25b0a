from __future__ import annotations

import asyncio
import copy
from collections.abc import Sequence
from dataclasses import fields
from typing import Any

from typing_extensions import Unpack

from .agent import Agent
from .exceptions import RaceAllFailed, UserError
from .items import TMessage
from .logger import logger
from .result import RaceResult, RunResult
from .run import Runner, RunOptions


def _as_race_result(result: RunResult, winner: str, participants: list[str]) -> RaceResult:
    result.metadata.race_participants = participants
    result.metadata.race_winners = [winner]
    return RaceResult(
        **{f.name: getattr(result, f.name) for f in fields(RunResult)},
        winning_agent=winner,
    )


async def race_agents(
    agents: Sequence[Agent[Any]],
    input: str | list[TMessage],
    **kwargs: Unpack[RunOptions],
) -> RaceResult:
    """Runs the same input through several agents at once and returns the first successful
    result. The other runs are cancelled once a winner exists; tool calls they already made are
    not rolled back.

    The result's usage is the winner's only. Its metadata lists every participant in
    `race_participants` and the winner in `race_winners`.

    Args:
        agents: The agents to race. Each one runs as its own independent run.
        input: The input given to every agent.
        **kwargs: Passed to `Runner.run` for every agent.

    Raises:
        UserError: If `agents` is empty.
        RaceAllFailed: If every run failed. Holds each agent's error.
    """
    if not agents:
        raise UserError("race_agents needs at least one agent")

    participants = [agent.name for agent in agents]
    if len(agents) == 1:
        result = await Runner.run(agents[0], input, **kwargs)
        return _as_race_result(result, agents[0].name, participants)

    tasks: dict[asyncio.Task[RunResult], Agent[Any]] = {
        asyncio.create_task(Runner.run(agent, copy.deepcopy(input), **kwargs)): agent
        for agent in agents
    }
    errors: dict[str, BaseException] = {}
    pending: set[asyncio.Task[RunResult]] = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            # Declaration order breaks ties between runs that finished together.
            for task, agent in tasks.items():
                if task not in done:
                    continue
                error = task.exception()
                if error is not None:
                    logger.debug(f"Race participant {agent.name} failed: {error}")
                    errors[agent.name] = error
                    continue
                logger.debug(f"Race won by {agent.name}")
                return _as_race_result(task.result(), agent.name, participants)
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    raise RaceAllFailed({name: errors[name] for name in participants if name in errors})
