"""Portfolio data model.

A Portfolio owns its positions and groups. Groups refer to positions by id,
never by object, and every position belongs to exactly one group. All model
objects are frozen: the allocation pipeline reads them and builds new objects
(e.g. after a broker refresh) instead of mutating them.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from src.fx.amount import Amount, normalize_currency, to_decimal
from src.security.cipher import CredentialBlob
from src.utils.exceptions import MalformedPortfolioError
from src.utils.logging import get_logger

logger = get_logger(__name__)

WEIGHT_TOLERANCE = Decimal("0.0001")


@dataclass(frozen=True)
class Position:
    """A single investable line item.

    Attributes:
        id: Identifier, unique within the portfolio
        name: Display name
        amount: Current holding in the position's native currency
        target: Target weight in [0, 1]
        ticker: Optional exchange ticker, for display
        broker_symbol: Broker symbol whose live market value replaces
            ``amount`` when the owning group is broker-linked
    """

    id: str
    name: str
    amount: Amount
    target: Decimal
    ticker: Optional[str] = None
    broker_symbol: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "target", to_decimal(self.target))

    @property
    def currency(self) -> str:
        return self.amount.currency

    @property
    def is_broker_linked(self) -> bool:
        return self.broker_symbol is not None


@dataclass(frozen=True)
class BrokerLink:
    """Link between a group and a brokerage account.

    Attributes:
        kind: Broker implementation name (e.g. "xtb")
        account_id: Login / account identifier at the broker
    """

    kind: str
    account_id: str


@dataclass(frozen=True)
class Group:
    """Named collection of positions that receive funds together.

    Attributes:
        id: Identifier, unique within the portfolio
        name: Display name
        position_ids: Ordered ids of member positions
        currency: Settlement currency, or None to report per position currency
        broker: Optional broker account backing this group
    """

    id: str
    name: str
    position_ids: Tuple[str, ...]
    currency: Optional[str] = None
    broker: Optional[BrokerLink] = None

    def __post_init__(self):
        object.__setattr__(self, "position_ids", tuple(self.position_ids))
        if self.currency is not None:
            object.__setattr__(self, "currency", normalize_currency(self.currency))


@dataclass(frozen=True)
class Portfolio:
    """Root of the model: ordered positions and groups.

    Attributes:
        positions: Positions in declaration order
        groups: Groups in declaration order
        reporting_currency: Currency used for totals and weights
        credential: Encrypted broker password, if one is stored

    Raises:
        MalformedPortfolioError: If the structure is inconsistent
    """

    positions: Tuple[Position, ...]
    groups: Tuple[Group, ...]
    reporting_currency: str
    credential: Optional[CredentialBlob] = None
    _index: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "positions", tuple(self.positions))
        object.__setattr__(self, "groups", tuple(self.groups))
        try:
            object.__setattr__(
                self, "reporting_currency", normalize_currency(self.reporting_currency)
            )
        except ValueError as e:
            raise MalformedPortfolioError(str(e)) from e
        object.__setattr__(
            self, "_index", {p.id: i for i, p in enumerate(self.positions)}
        )
        self._validate()

    def _validate(self) -> None:
        if len(self._index) != len(self.positions):
            counts = Counter(p.id for p in self.positions)
            duplicates = sorted(pid for pid, n in counts.items() if n > 1)
            raise MalformedPortfolioError(
                f"Duplicate position ids: {', '.join(duplicates)}"
            )

        group_ids = [g.id for g in self.groups]
        if len(set(group_ids)) != len(group_ids):
            raise MalformedPortfolioError("Duplicate group ids")

        for position in self.positions:
            if position.amount.value < 0:
                raise MalformedPortfolioError(
                    f"Position {position.id} has negative amount {position.amount.value}"
                )
            if not Decimal(0) <= position.target <= Decimal(1):
                raise MalformedPortfolioError(
                    f"Position {position.id} target must be in [0, 1], got {position.target}"
                )

        owner: Dict[str, str] = {}
        for group in self.groups:
            for position_id in group.position_ids:
                if position_id not in self._index:
                    raise MalformedPortfolioError(
                        f"Group {group.id} references undefined position {position_id}"
                    )
                if position_id in owner:
                    raise MalformedPortfolioError(
                        f"Position {position_id} belongs to groups "
                        f"{owner[position_id]} and {group.id}"
                    )
                owner[position_id] = group.id

        orphans = [p.id for p in self.positions if p.id not in owner]
        if orphans:
            raise MalformedPortfolioError(
                f"Positions not in any group: {', '.join(orphans)}"
            )

        target_sum = self.target_sum()
        if abs(target_sum - Decimal(1)) > WEIGHT_TOLERANCE:
            logger.warning(
                "Target weights sum to %s, not 1; they will be normalized", target_sum
            )

    def position(self, position_id: str) -> Position:
        """Look up a position by id.

        Raises:
            KeyError: If no such position exists
        """
        return self.positions[self._index[position_id]]

    def group_positions(self, group: Group) -> List[Position]:
        return [self.position(pid) for pid in group.position_ids]

    def target_weights(self) -> Dict[str, Decimal]:
        """Declared target weights {position_id: weight}, not normalized."""
        return {p.id: p.target for p in self.positions}

    def target_sum(self) -> Decimal:
        return sum((p.target for p in self.positions), Decimal(0))

    def currencies(self) -> set[str]:
        """Every currency referenced by positions, groups or reporting."""
        currencies = {p.currency for p in self.positions}
        currencies.update(g.currency for g in self.groups if g.currency)
        currencies.add(self.reporting_currency)
        return currencies


@dataclass(frozen=True)
class PositionDelta:
    """Recommended addition to one position.

    Attributes:
        position_id: Position identifier
        delta: Amount to add, in the position's native currency (never negative)
        resulting: Holding after the addition, in native currency
    """

    position_id: str
    delta: Amount
    resulting: Amount


@dataclass(frozen=True)
class GroupTotal:
    """Sum of deltas for one group in one currency."""

    group_id: str
    total: Amount


@dataclass
class AllocationResult:
    """Output of an ``invest`` computation. Never persisted.

    Attributes:
        investment: The amount being invested, as requested
        reporting_currency: Currency used for the internal computation
        positions: Per-position deltas in declaration order
        groups: Per-group totals in declaration order
    """

    investment: Amount
    reporting_currency: str
    positions: List[PositionDelta]
    groups: List[GroupTotal] = field(default_factory=list)

    def delta_for(self, position_id: str) -> PositionDelta:
        for delta in self.positions:
            if delta.position_id == position_id:
                return delta
        raise KeyError(position_id)
