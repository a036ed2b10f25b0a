import re

from ..logger import logger


def transform_string_function_style(name: str) -> str:
    """Lower-case `name` and collapse whitespace and other non-identifier characters to
    underscores, so it can be used as a function-calling tool name."""
    collapsed = re.sub(r"\s+", "_", name.strip())
    transformed_name = re.sub(r"[^a-zA-Z0-9_]", "_", collapsed)

    if transformed_name != collapsed:
        logger.warning(
            f"Tool name {name!r} contains invalid characters for function calling and has been "
            f"transformed to {transformed_name.lower()!r}."
        )

    return transformed_name.lower()


def validate_agent_name(name: str) -> None:
    """Validate an agent name.

    Agent names identify handoff targets and tracing spans, so they must be non-empty and
    free of surrounding whitespace.

    Raises:
        ValueError: If the name is unusable.
    """
    if not name or not name.strip():
        raise ValueError("Agent name cannot be empty")

    if name != name.strip():
        raise ValueError(
            f"Agent name {name!r} has leading/trailing whitespace. "
            f"Consider using {name.strip()!r} instead."
        )

    if len(name) > 100:
        raise ValueError(
            f"Agent name {name!r} is {len(name)} characters long. "
            f"Consider using a shorter name (under 100 characters)."
        )
