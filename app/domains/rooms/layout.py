# app/domains/rooms/layout.py
"""
Seat layout engine.

Pure functions over the closed set of mic counts. VIP seats are always the
lowest seat numbers; rearranging never drops an occupant: whoever doesn't
fit is reported back as overflow so the caller can queue them.
"""
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Tuple

from app.shared.exceptions import InvalidMicCount, InvariantViolation

from .entities import Seat

VALID_MIC_COUNTS: Tuple[int, ...] = (2, 6, 12, 16, 20)

VIP_MICS: Dict[int, int] = {2: 0, 6: 1, 12: 2, 16: 3, 20: 4}

# total -> (rows, cols, arrangement)
GRID: Dict[int, Tuple[int, int, str]] = {
    2: (1, 2, "horizontal"),
    6: (2, 3, "grid"),
    12: (3, 4, "grid"),
    16: (4, 4, "square"),
    20: (4, 5, "grid"),
}


@dataclass(frozen=True)
class MicLayout:
    total_mics: int
    rows: int
    cols: int
    vip_slots: int
    guest_slots: int
    arrangement: str
    style: str

    @property
    def vip_positions(self) -> List[int]:
        return list(range(1, self.vip_slots + 1))

    @property
    def guest_positions(self) -> List[int]:
        return list(range(self.vip_slots + 1, self.total_mics + 1))

    def to_dict(self) -> dict:
        return {
            "total_mics": self.total_mics,
            "rows": self.rows,
            "cols": self.cols,
            "vip_slots": self.vip_slots,
            "guest_slots": self.guest_slots,
            "arrangement": self.arrangement,
            "style": self.style,
            "vip_positions": self.vip_positions,
            "guest_positions": self.guest_positions,
        }


@dataclass(frozen=True)
class SeatMove:
    user_id: str
    from_seat: int
    to_seat: int


@dataclass
class Rearrangement:
    seats: List[Seat]
    overflow: List[Seat] = field(default_factory=list)
    moves: List[SeatMove] = field(default_factory=list)

    @property
    def overflow_users(self) -> List[str]:
        return [seat.user_id for seat in self.overflow]


def validate_mic_count(total_mics) -> int:
    # bool is an int subclass, True must not pass as a mic count
    if isinstance(total_mics, bool) or total_mics not in VALID_MIC_COUNTS:
        raise InvalidMicCount(
            f"Mic count must be one of {', '.join(map(str, VALID_MIC_COUNTS))}, got {total_mics!r}"
        )
    return total_mics


def vip_mics_for(total_mics: int) -> int:
    return VIP_MICS[validate_mic_count(total_mics)]


def _style_for(total_mics: int) -> str:
    if total_mics <= 6:
        return "circle"
    if total_mics <= 12:
        return "grid"
    return "rows"


def layout_for(total_mics: int) -> MicLayout:
    total = validate_mic_count(total_mics)
    rows, cols, arrangement = GRID[total]
    vip = VIP_MICS[total]
    return MicLayout(
        total_mics=total,
        rows=rows,
        cols=cols,
        vip_slots=vip,
        guest_slots=total - vip,
        arrangement=arrangement,
        style=_style_for(total),
    )


def build_seats(total_mics: int) -> List[Seat]:
    layout = layout_for(total_mics)
    return [
        Seat(seat_number=number, is_vip=number <= layout.vip_slots)
        for number in range(1, layout.total_mics + 1)
    ]


def _carry(target: Seat, source: Seat):
    target.user_id = source.user_id
    target.joined_at = source.joined_at
    target.is_muted = source.is_muted


def rearrange(
    old_seats: List[Seat],
    new_total_mics: int,
    privileged: Collection[str],
) -> Rearrangement:
    """
    Re-seat current occupants onto a fresh seat array of ``new_total_mics``.

    Owner/admin occupants fill VIP seats first, in prior seat order. Those that
    don't fit join the regular occupants for the guest seats, again in prior
    seat order. Anyone left over ends up in ``overflow``.
    """
    layout = layout_for(new_total_mics)
    new_seats = build_seats(layout.total_mics)
    result = Rearrangement(seats=new_seats)

    occupied = sorted((s for s in old_seats if s.user_id), key=lambda s: s.seat_number)
    first_pass = [s for s in occupied if s.user_id in privileged]

    vip_free = iter(new_seats[: layout.vip_slots])
    leftover: List[Seat] = []
    for old in first_pass:
        target = next(vip_free, None)
        if target is None:
            leftover.append(old)
            continue
        _carry(target, old)
        result.moves.append(SeatMove(old.user_id, old.seat_number, target.seat_number))

    second_pass = sorted(
        leftover + [s for s in occupied if s.user_id not in privileged],
        key=lambda s: s.seat_number,
    )
    guest_free = iter(new_seats[layout.vip_slots:])
    for old in second_pass:
        target = next(guest_free, None)
        if target is None:
            result.overflow.append(old)
            continue
        _carry(target, old)
        result.moves.append(SeatMove(old.user_id, old.seat_number, target.seat_number))

    if len(result.moves) + len(result.overflow) != len(occupied):
        raise InvariantViolation(
            f"Rearrange lost occupants: {len(occupied)} seated, "
            f"{len(result.moves)} placed, {len(result.overflow)} overflow"
        )
    return result
