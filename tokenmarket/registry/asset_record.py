import time
from dataclasses import dataclass, field

from tokenmarket.ledger.types import AssetData, Trait
from tokenmarket.market.state import CommercialState, Idle, StateKind, blocks_transfer


@dataclass(slots=True)
class AssetRecord:
    """Single cached asset"""

    token_id: int
    asset: AssetData
    owner: str
    attributes: tuple[Trait, ...] = ()
    state: CommercialState = field(default_factory=Idle)
    time_left: int = 0  # seconds, ticked locally between refreshes
    stale: bool = False  # finalize of a lapsed rental failed
    last_synced_at: float = field(default_factory=time.time)

    @property
    def kind(self) -> StateKind:
        return self.state.kind

    @property
    def is_rented(self) -> bool:
        return self.state.kind == StateKind.RENTED

    @property
    def is_transferable(self) -> bool:
        """Whether the client allows a transfer command for this asset"""
        return not blocks_transfer(self.state)
