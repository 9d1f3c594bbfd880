# pmcoach/services/conversation.py
from datetime import datetime
from typing import Iterator, List, Sequence

from pmcoach.schemas.interview import Role, Turn


class ConversationFrozen(RuntimeError):
    pass


class ConversationLog:
    """Ordered, append-only sequence of turns owned by one session."""

    def __init__(self):
        self._turns: List[Turn] = []
        self._frozen = False

    def append(self, role: Role, message: str, timestamp: datetime) -> Turn:
        if self._frozen:
            raise ConversationFrozen("conversation is read-only once the session has ended")
        turn = Turn(role=role, message=message, timestamp=timestamp)
        self._turns.append(turn)
        return turn

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def turns(self) -> Sequence[Turn]:
        return tuple(self._turns)

    def candidate_turn_count(self) -> int:
        return sum(1 for t in self._turns if t.role == Role.CANDIDATE)

    def to_transcript(self) -> str:
        return "\n".join(f"{t.role.value}: {t.message}" for t in self._turns)

    def to_json(self) -> List[dict]:
        return [t.model_dump(mode="json") for t in self._turns]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)
