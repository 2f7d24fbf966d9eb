from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from formatters import elapsed_label


@dataclass(frozen=True)
class Success:
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failure:
    error: str
    data: dict[str, Any] = field(default_factory=dict)


ToolResult = Union[Success, Failure]


def render_result(result: ToolResult, started: float) -> dict[str, Any]:
    """Single wire shape for every tool response.

    `sucesso` always comes first, `erro` only on failures, and
    `tempo_execucao` is stamped last.
    """

    payload: dict[str, Any] = {"sucesso": isinstance(result, Success)}
    payload.update(result.data)
    if isinstance(result, Failure):
        payload["erro"] = result.error
    payload["tempo_execucao"] = elapsed_label(started)
    return payload


__all__ = ["Failure", "Success", "ToolResult", "render_result"]
