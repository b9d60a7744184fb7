"""Optional per-instruction tracing for the tinyvm machine."""

import sys
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, TextIO, Tuple

from tinyvm.instructions import Instruction


class TraceWatcher(Protocol):
    """Protocol for machine trace watchers."""
    def on_instruction(self, instruction: Instruction, stack: Tuple[float, ...], depth: int) -> None:
        """
        Called once before each instruction executes.

        Args:
            instruction: The instruction about to execute
            stack: Snapshot of the operand stack, bottom first
            depth: Call depth (0 for top-level execution)
        """


@dataclass(frozen=True)
class TraceEvent:
    instruction: Instruction
    stack: Tuple[float, ...]
    depth: int


@dataclass
class RecordingTraceWatcher:
    """Collects every trace event in order."""
    events: List[TraceEvent] = field(default_factory=list)

    def on_instruction(self, instruction: Instruction, stack: Tuple[float, ...], depth: int) -> None:
        self.events.append(TraceEvent(instruction, stack, depth))

    @property
    def instructions(self) -> List[Instruction]:
        return [event.instruction for event in self.events]


class PrintTraceWatcher:
    """Prints one line per executed instruction, indented by call depth."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream

    def on_instruction(self, instruction: Instruction, stack: Tuple[float, ...], depth: int) -> None:
        out = self.stream if self.stream is not None else sys.stdout
        print(f"{'  ' * depth}Op: {instruction}, Stack: {list(stack)}", file=out)
