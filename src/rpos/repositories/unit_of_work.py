from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from rpos.domain.models import Bill


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def persist_bill(self, bill: Bill, side_effects: Iterable[tuple[str, dict]]) -> list[int]: ...


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for the bill write.

    The bill header, its lines and its outbox rows land in a single repository
    transaction, so a bill is never visible without the side effects it still owes.
    """

    repo: object

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def persist_bill(self, bill: Bill, side_effects: Iterable[tuple[str, dict]]) -> list[int]:
        return list(self.repo.insert_bill(bill, list(side_effects)))
