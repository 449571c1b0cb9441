#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

STORAGE_KEY = "cce_air_data_v1"
DEFAULT_STATE_FILE = f"{STORAGE_KEY}.json"

FIRST_FLIGHT_ID = 1
FIRST_TICKET_ID = 1000

_LEADING_INT = re.compile(r"[+-]?\d+")


# ---------------------------
# Enums / Data Model
# ---------------------------

class ValidationPolicy(str, Enum):
    LENIENT = "lenient"
    STRICT = "strict"


class ServiceError(str, Enum):
    NO_SUCH_FLIGHT = "No flight"
    INSUFFICIENT_SEATS = "Not enough seats"
    NO_SUCH_TICKET = "No ticket"
    INVALID_INPUT = "Invalid input"


@dataclass
class Flight:
    id: int
    name: str
    source: str
    destination: str
    date: str
    time: str
    seats: int    # unbooked seats left
    price: float


@dataclass
class Booking:
    ticket_id: int
    passengers: List[str]
    contact: str
    flight_id: int
    seat_count: int


@dataclass
class FlightResult:
    flight: Optional[Flight] = None
    error: Optional[ServiceError] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BookingResult:
    booking: Optional[Booking] = None
    error: Optional[ServiceError] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CancelResult:
    ticket_id: Optional[int]
    error: Optional[ServiceError] = None
    seats_restored: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok


# ---------------------------
# In-memory Store
# ---------------------------

@dataclass
class InMemoryStore:
    flights: List[Flight] = field(default_factory=list)
    bookings: List[Booking] = field(default_factory=list)
    flight_counter: int = FIRST_FLIGHT_ID
    ticket_counter: int = FIRST_TICKET_ID

    def find_flight(self, flight_id: int) -> Optional[Flight]:
        for f in self.flights:
            if f.id == flight_id:
                return f
        return None

    def find_booking(self, ticket_id: int) -> Optional[Booking]:
        for b in self.bookings:
            if b.ticket_id == ticket_id:
                return b
        return None

    def next_flight_id(self) -> int:
        fid = self.flight_counter
        self.flight_counter += 1
        return fid

    def next_ticket_id(self) -> int:
        tid = self.ticket_counter
        self.ticket_counter += 1
        return tid


# ---------------------------
# Input Parsing
# ---------------------------

class InvalidInput(ValueError):
    pass


def parse_int(raw: Any, policy: ValidationPolicy, field_name: str) -> int:
    """
    Parse an integer from form-style input.
    LENIENT: only the leading integer counts ("3.7" -> 3, "1e3" -> 1),
    no leading digits gives 0.
    STRICT: only integral values are accepted.
    """
    if isinstance(raw, bool):
        raise InvalidInput(f"{field_name} must be a number")
    if isinstance(raw, int):
        return raw
    text = "" if raw is None else str(raw).strip()
    try:
        return int(text)
    except ValueError:
        pass
    if policy == ValidationPolicy.STRICT:
        raise InvalidInput(f"{field_name} must be a whole number, got {text!r}")
    m = _LEADING_INT.match(text)
    return int(m.group()) if m else 0


def parse_float(raw: Any, policy: ValidationPolicy, field_name: str) -> float:
    if isinstance(raw, bool):
        raise InvalidInput(f"{field_name} must be a number")
    if isinstance(raw, (int, float)):
        try:
            value = float(raw)
        except OverflowError:
            if policy == ValidationPolicy.STRICT:
                raise InvalidInput(f"{field_name} is too large")
            return 0.0
    else:
        text = "" if raw is None else str(raw).strip()
        try:
            value = float(text)
        except ValueError:
            if policy == ValidationPolicy.STRICT:
                raise InvalidInput(f"{field_name} must be a number, got {text!r}")
            return 0.0
    if value != value or value in (float("inf"), float("-inf")):
        if policy == ValidationPolicy.STRICT:
            raise InvalidInput(f"{field_name} must be finite")
        return 0.0
    return value


def non_negative(value, policy: ValidationPolicy, field_name: str):
    if value >= 0:
        return value
    if policy == ValidationPolicy.STRICT:
        raise InvalidInput(f"{field_name} must be >= 0, got {value}")
    return type(value)(0)


# ---------------------------
# Core Service
# ---------------------------

class BookingService:
    def __init__(
        self,
        store: InMemoryStore,
        state_file: str,
        policy: ValidationPolicy = ValidationPolicy.LENIENT,
    ) -> None:
        self.store = store
        self.state_file = state_file
        self.policy = policy

    def _persist(self) -> None:
        save_store(self.store, self.state_file)

    def get_flights(self) -> List[Flight]:
        """Live list; mutate only through the service."""
        return self.store.flights

    def get_bookings(self) -> List[Booking]:
        return self.store.bookings

    def add_flight(
        self,
        name: str,
        source: str,
        destination: str,
        date: str,
        time: str,
        seats: Any,
        price: Any,
    ) -> FlightResult:
        try:
            seat_total = non_negative(parse_int(seats, self.policy, "seats"), self.policy, "seats")
            unit_price = non_negative(parse_float(price, self.policy, "price"), self.policy, "price")
        except InvalidInput as e:
            logger.warning("Rejected flight %r: %s", name, e)
            return FlightResult(error=ServiceError.INVALID_INPUT, detail=str(e))

        flight = Flight(
            id=self.store.next_flight_id(),
            name=name,
            source=source,
            destination=destination,
            date=date,
            time=time,
            seats=seat_total,
            price=unit_price,
        )
        self.store.flights.append(flight)
        self._persist()
        logger.info("Added flight id=%s name=%r seats=%s", flight.id, flight.name, flight.seats)
        return FlightResult(flight=flight)

    def book_flight(
        self,
        passengers: List[str],
        contact: str,
        flight_id: Any,
        seat_count: Any,
    ) -> BookingResult:
        """
        Reserve seat_count seats on a flight and issue a ticket.
        Seat decrement and booking creation happen together; on any
        failure neither the store nor the state file changes.
        """
        try:
            count = parse_int(seat_count, self.policy, "seat count")
        except InvalidInput as e:
            return self._reject(ServiceError.INVALID_INPUT, str(e))

        try:
            fid = parse_int(flight_id, ValidationPolicy.STRICT, "flight id")
        except InvalidInput:
            return self._reject(ServiceError.NO_SUCH_FLIGHT, f"Unknown flight id: {flight_id}")

        flight = self.store.find_flight(fid)
        if flight is None:
            return self._reject(ServiceError.NO_SUCH_FLIGHT, f"Unknown flight id: {fid}")

        if count <= 0 or count > flight.seats:
            return self._reject(
                ServiceError.INSUFFICIENT_SEATS,
                f"Requested={count}, available={flight.seats}",
            )

        if not isinstance(passengers, (list, tuple)) or not all(isinstance(p, str) for p in passengers):
            return self._reject(ServiceError.INVALID_INPUT, "Passengers must be a list of names")
        names = list(passengers)
        if len(names) != count:
            return self._reject(
                ServiceError.INVALID_INPUT,
                f"Expected {count} passenger names, got {len(names)}",
            )

        flight.seats -= count
        booking = Booking(
            ticket_id=self.store.next_ticket_id(),
            passengers=names,
            contact=contact,
            flight_id=flight.id,
            seat_count=count,
        )
        self.store.bookings.append(booking)
        self._persist()
        logger.info(
            "Booked ticket=%s flight=%s seats=%s (left=%s)",
            booking.ticket_id, flight.id, count, flight.seats,
        )
        return BookingResult(booking=booking)

    def _reject(self, error: ServiceError, detail: str) -> BookingResult:
        logger.warning("Booking rejected: %s (%s)", error.value, detail)
        return BookingResult(error=error, detail=detail)

    def cancel_booking(self, ticket_id: Any) -> CancelResult:
        try:
            tid = parse_int(ticket_id, ValidationPolicy.STRICT, "ticket id")
        except InvalidInput:
            logger.warning("Cancel rejected: unparsable ticket id %r", ticket_id)
            return CancelResult(ticket_id=None, error=ServiceError.NO_SUCH_TICKET)

        booking = self.store.find_booking(tid)
        if booking is None:
            logger.warning("Cancel rejected: no ticket %s", tid)
            return CancelResult(ticket_id=tid, error=ServiceError.NO_SUCH_TICKET)

        restored = 0
        flight = self.store.find_flight(booking.flight_id)
        if flight is not None:
            flight.seats += booking.seat_count
            restored = booking.seat_count
        else:
            # weak reference: nothing to credit
            logger.warning(
                "Ticket %s references missing flight %s; seats not restored",
                tid, booking.flight_id,
            )

        self.store.bookings.remove(booking)
        self._persist()
        logger.info("Cancelled ticket=%s restored=%s", tid, restored)
        return CancelResult(ticket_id=tid, seats_restored=restored)


# ---------------------------
# Configuration / Logging
# ---------------------------

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AIRTICKET_", env_file=".env", extra="ignore")

    STATE_FILE: str = DEFAULT_STATE_FILE
    VALIDATION: ValidationPolicy = ValidationPolicy.LENIENT
    LOG_LEVEL: str = "WARNING"


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


# ---------------------------
# CLI
# ---------------------------

def print_flights(flights: List[Flight]) -> None:
    if not flights:
        print("No flights added yet.")
        return

    print(f"{'ID':>4}  {'Name':<12} {'From':<8} {'To':<8} {'Date':<10} {'Time':<6} {'Seats':>5} {'Price':>10}")
    print("-" * 72)
    for f in flights:
        print(
            f"{f.id:>4}  {f.name:<12} {f.source:<8} {f.destination:<8} "
            f"{f.date:<10} {f.time:<6} {f.seats:>5} {f.price:>10.2f}"
        )


def print_bookings(bookings: List[Booking]) -> None:
    if not bookings:
        print("No bookings yet.")
        return

    print(f"{'Ticket':>6}  {'Flight':>6} {'Seats':>5}  {'Contact':<24} Passengers")
    print("-" * 72)
    for b in bookings:
        print(
            f"{b.ticket_id:>6}  {b.flight_id:>6} {b.seat_count:>5}  "
            f"{b.contact:<24} {', '.join(b.passengers)}"
        )


def collect_passengers(
    count: int,
    given: Optional[List[str]] = None,
    ask: Optional[Callable[[str], str]] = None,
) -> List[str]:
    """
    Gather exactly `count` passenger names, prompting for any not given
    on the command line. Runs to completion before any booking call.
    """
    ask = ask or input
    names = [n.strip() for n in (given or [])]
    if any(not n for n in names):
        raise ValueError("Passenger name required")
    while len(names) < count:
        name = ask(f"Enter passenger {len(names) + 1} name: ").strip()
        if not name:
            raise ValueError("Passenger name required")
        names.append(name)
    return names


def cmd_add_flight(args: argparse.Namespace, svc: BookingService) -> int:
    name = args.name.strip()
    source = args.source.strip()
    destination = args.destination.strip()
    if not name or not source or not destination:
        raise ValueError("--name, --source and --destination must not be blank.")

    res = svc.add_flight(
        name=name,
        source=source,
        destination=destination,
        date=args.date.strip() or "-",
        time=args.time.strip() or "-",
        seats=args.seats.strip() or 0,
        price=args.price.strip() or 0,
    )
    if not res.ok:
        raise ValueError(f"{res.error.value}: {res.detail}")
    print(f"Flight added: {res.flight.name} (ID {res.flight.id})")
    return 0


def cmd_flights(args: argparse.Namespace, svc: BookingService) -> int:
    print_flights(svc.get_flights())
    return 0


def cmd_bookings(args: argparse.Namespace, svc: BookingService) -> int:
    print_bookings(svc.get_bookings())
    return 0


def cmd_book(args: argparse.Namespace, svc: BookingService) -> int:
    if args.seats <= 0:
        raise ValueError("--seats must be > 0.")
    if args.passenger and len(args.passenger) > args.seats:
        raise ValueError(f"Got {len(args.passenger)} passengers for {args.seats} seats.")

    passengers = collect_passengers(args.seats, args.passenger)
    res = svc.book_flight(passengers, args.contact.strip(), args.flight_id, args.seats)
    if not res.ok:
        raise ValueError(f"{res.error.value} ({res.detail})")
    print("Booking success.")
    print(f"ticket_id={res.booking.ticket_id}")
    print(f"flight_id={res.booking.flight_id}")
    return 0


def cmd_cancel(args: argparse.Namespace, svc: BookingService) -> int:
    res = svc.cancel_booking(args.ticket_id)
    if not res:
        raise ValueError(f"No ticket {args.ticket_id}")
    print(f"Cancelled ticket {res.ticket_id}")
    return 0


def build_parser(settings: Optional[Settings] = None) -> argparse.ArgumentParser:
    settings = settings or Settings()
    parser = argparse.ArgumentParser(prog="airticket", description="Local flight booking desk")
    parser.add_argument(
        "--state-file",
        default=settings.STATE_FILE,
        help=f"Path to persisted state JSON (default: {settings.STATE_FILE})",
    )
    parser.add_argument(
        "--validation",
        choices=[p.value for p in ValidationPolicy],
        default=settings.VALIDATION.value,
        help="Numeric input policy for new flights",
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_add = sub.add_parser("add-flight", help="Register a flight")
    p_add.add_argument("--name", required=True)
    p_add.add_argument("--source", required=True)
    p_add.add_argument("--destination", required=True)
    p_add.add_argument("--date", default="", help="e.g. 2025-12-31")
    p_add.add_argument("--time", default="", help="e.g. 14:30")
    p_add.add_argument("--seats", default="")
    p_add.add_argument("--price", default="", help="Ticket price (BDT)")
    p_add.set_defaults(func=cmd_add_flight)

    p_flights = sub.add_parser("flights", help="Show all flights")
    p_flights.set_defaults(func=cmd_flights)

    p_bookings = sub.add_parser("bookings", help="Show all bookings")
    p_bookings.set_defaults(func=cmd_bookings)

    p_book = sub.add_parser("book", help="Book seats on a flight")
    p_book.add_argument("flight_id")
    p_book.add_argument("--seats", type=int, required=True)
    p_book.add_argument("--contact", required=True, help="email/phone")
    p_book.add_argument(
        "--passenger",
        action="append",
        default=None,
        help="Passenger name (repeatable); missing names are prompted for",
    )
    p_book.set_defaults(func=cmd_book)

    p_cancel = sub.add_parser("cancel", help="Cancel a ticket")
    p_cancel.add_argument("ticket_id")
    p_cancel.set_defaults(func=cmd_cancel)

    return parser


# ---------------------------
# Persistence
# ---------------------------

def store_to_dict(store: InMemoryStore) -> dict:
    return {
        "flights": [
            {
                "id": f.id,
                "name": f.name,
                "source": f.source,
                "destination": f.destination,
                "date": f.date,
                "time": f.time,
                "seats": f.seats,
                "price": f.price,
            }
            for f in store.flights
        ],
        "bookings": [
            {
                "ticketId": b.ticket_id,
                "passengers": list(b.passengers),
                "contact": b.contact,
                "flightId": b.flight_id,
                "seatCount": b.seat_count,
            }
            for b in store.bookings
        ],
        "flightCounter": store.flight_counter,
        "ticketCounter": store.ticket_counter,
    }


def _expect_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected int, got {value!r}")
    return value


def dict_to_store(data: dict) -> InMemoryStore:
    if not isinstance(data, dict):
        raise TypeError("state must be a JSON object")
    store = InMemoryStore(
        flight_counter=_expect_int(data["flightCounter"]),
        ticket_counter=_expect_int(data["ticketCounter"]),
    )
    for f in data["flights"]:
        store.flights.append(Flight(
            id=_expect_int(f["id"]),
            name=str(f["name"]),
            source=str(f["source"]),
            destination=str(f["destination"]),
            date=str(f["date"]),
            time=str(f["time"]),
            seats=_expect_int(f["seats"]),
            price=float(f["price"]),
        ))
    for b in data["bookings"]:
        if not isinstance(b["passengers"], list):
            raise TypeError("passengers must be a list")
        store.bookings.append(Booking(
            ticket_id=_expect_int(b["ticketId"]),
            passengers=[str(p) for p in b["passengers"]],
            contact=str(b["contact"]),
            flight_id=_expect_int(b["flightId"]),
            seat_count=_expect_int(b["seatCount"]),
        ))
    return store


def load_store(path: str) -> InMemoryStore:
    """Read persisted state; a missing or malformed file yields a fresh store."""
    if not os.path.exists(path):
        logger.debug("No state at %s; starting empty", path)
        return InMemoryStore()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        store = dict_to_store(data)
    except (OSError, ValueError, KeyError, TypeError, RecursionError) as e:
        logger.warning("Discarding unreadable state in %s: %s", path, e)
        return InMemoryStore()

    logger.debug("Loaded %d flights, %d bookings from %s", len(store.flights), len(store.bookings), path)
    return store


def save_store(store: InMemoryStore, path: str) -> None:
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(store_to_dict(store), f, indent=2)
    os.replace(tmp, path)
    logger.debug("Saved state to %s", path)


def main(argv: List[str]) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    store = load_store(args.state_file)
    svc = BookingService(store=store, state_file=args.state_file, policy=ValidationPolicy(args.validation))

    try:
        return args.func(args, svc)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except (EOFError, KeyboardInterrupt):
        print("ERROR: input aborted", file=sys.stderr)
        return 2


def _cli() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(_cli())
