"""Vehicle gate log tracking.

Every entry opens a new log; an exit closes it exactly once. Whether a
vehicle is inside is always derived from the logs, never stored.

Known limitation: ``record_exit`` checks for an existing exit against a read
taken immediately before its write. Two operators closing the same log at
the same instant can both pass the check; the later write wins.
"""

from __future__ import annotations

import logging
import re
from datetime import date, tzinfo
from typing import Awaitable, Callable

from society_engine.core.clock import IClock
from society_engine.core.config import GateConfig
from society_engine.core.enums import Action, VehicleClass
from society_engine.core.errors import AlreadyExited, ValidationError
from society_engine.core.interfaces import IAuthorizer
from society_engine.core.models import GateLog, Principal
from society_engine.lifecycle.guards import require_authorized
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.store.query import SERVER_TIMESTAMP
from society_engine.store.subscription import Subscription

from .stats import DailyGateStats, daily_stats, group_by_house

logger = logging.getLogger(__name__)

_PLATE_RE = re.compile(r"[A-Z0-9-]+")


def normalize_vehicle_no(raw: str | None, max_length: int = 20) -> str:
    """Upper-case, strip and check a registration plate."""
    plate = (raw or "").strip().upper()
    if not plate:
        raise ValidationError({"vehicle_no": "Vehicle number is required"})
    if len(plate) > max_length:
        raise ValidationError({
            "vehicle_no": f"Vehicle number {plate} exceeds {max_length} characters",
        })
    if not _PLATE_RE.fullmatch(plate):
        raise ValidationError({
            "vehicle_no": f"Vehicle number {plate} may only contain A-Z, 0-9 and '-'",
        })
    return plate


class GateLogTracker:
    """Records vehicle entries and exits and answers "who is inside".

    Args:
        repository: Gate log repository.
        clock: Time source for the local day.
        tz: Society timezone used for daily counters.
        config: Plate and house rules.
        authorizer: Optional policy check for gate actions; ``None`` allows
            every operator.
    """

    def __init__(
        self,
        repository: ResourceRepository[GateLog],
        clock: IClock,
        tz: tzinfo,
        config: GateConfig | None = None,
        authorizer: IAuthorizer | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._tz = tz
        self._config = config or GateConfig()
        self._authorizer = authorizer

    @property
    def repository(self) -> ResourceRepository[GateLog]:
        return self._repository

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def record_entry(
        self,
        vehicle_no: str,
        vehicle_class: VehicleClass | str,
        house: str | None,
        operator: Principal,
        *,
        resident_id: str | None = None,
        visitor_name: str | None = None,
        purpose: str | None = None,
    ) -> str:
        """Open a new log for a vehicle entering. Returns the log id.

        Never reuses an existing log, even when the same vehicle is already
        inside.
        """
        errors: dict[str, str] = {}
        plate = ""
        try:
            plate = normalize_vehicle_no(vehicle_no, self._config.max_vehicle_no_length)
        except ValidationError as exc:
            errors.update(exc.errors)

        klass: VehicleClass | None = None
        try:
            klass = VehicleClass(vehicle_class)
        except ValueError:
            errors["vehicle_class"] = (
                f"Unknown vehicle class {vehicle_class!r}; expected one of "
                + ", ".join(c.value for c in VehicleClass)
            )

        house_no = (house or "").strip().upper() or None
        if klass is not None and house_no is None and klass.value in self._config.house_required_for:
            errors["house"] = f"House number is required for {klass.value} vehicles"
        if errors or klass is None:
            raise ValidationError(errors)

        await self._check_authorized(operator, Action.GATE_ENTRY)
        existing = await self.find_active(plate)
        if existing is not None:
            logger.info("Vehicle %s entering again while log %s is open", plate, existing.id)

        log_id = await self._repository.create(
            GateLog(
                vehicle_no=plate,
                vehicle_class=klass,
                entry_time=self._clock.now(),
                associated_house=house_no,
                logged_by=operator.principal_id,
                logged_by_name=operator.display_name,
                resident_id=resident_id,
                visitor_name=(visitor_name or "").strip() or None,
                purpose=(purpose or "").strip() or None,
            ),
            server_fields=("entry_time",),
        )
        logger.info("Entry %s: %s (%s) house=%s", log_id, plate, klass.value, house_no)
        return log_id

    async def record_exit(self, log_id: str, operator: Principal) -> GateLog:
        """Close an open log.

        Raises:
            NotFound: No log with *log_id*.
            AlreadyExited: The exit was already recorded; the stored exit
                time is unchanged.
        """
        await self._check_authorized(operator, Action.GATE_EXIT)
        log = await self._repository.get(log_id)
        if log.exit_time is not None:
            raise AlreadyExited(log_id, log.vehicle_no, log.exit_time)

        updated = await self._repository.update(log_id, {
            "exit_time": SERVER_TIMESTAMP,
            "exit_logged_by": operator.principal_id,
        })
        logger.info("Exit %s: %s", log_id, log.vehicle_no)
        return updated

    # ------------------------------------------------------------------
    # Derived queries
    # ------------------------------------------------------------------

    async def all_logs(self) -> list[GateLog]:
        return await self._repository.list_all(
            order_by=[self._repository.order("entry_time", descending=True)],
        )

    async def active_vehicles(self) -> list[GateLog]:
        """Every log with no exit, newest entry first."""
        return await self._repository.list_all(
            [self._repository.where("exit_time", "==", None)],
            [self._repository.order("entry_time", descending=True)],
        )

    async def find_active(self, vehicle_no: str) -> GateLog | None:
        """The open log of a vehicle, if it is inside."""
        plate = (vehicle_no or "").strip().upper()
        if not plate:
            return None
        logs = await self._repository.list_all(
            [
                self._repository.where("vehicle_no", "==", plate),
                self._repository.where("exit_time", "==", None),
            ],
            [self._repository.order("entry_time", descending=True)],
        )
        return logs[0] if logs else None

    async def by_house(self) -> dict[str, list[GateLog]]:
        return group_by_house(await self.all_logs())

    async def resident_logs(self, resident_id: str) -> list[GateLog]:
        return await self._repository.list_all(
            [self._repository.where("resident_id", "==", resident_id)],
            [self._repository.order("entry_time", descending=True)],
        )

    async def today_stats(self, tz: tzinfo | None = None) -> DailyGateStats:
        """Today's counters in *tz* (default: the society timezone).

        Computed from a single read, so ``inside`` always equals the number
        of active logs in that read.
        """
        zone = tz or self._tz
        return daily_stats(await self.all_logs(), self._clock.now().astimezone(zone).date(), zone)

    async def stats_for(self, day: date, tz: tzinfo | None = None) -> DailyGateStats:
        return daily_stats(await self.all_logs(), day, tz or self._tz)

    async def subscribe_active(
        self,
        on_snapshot: Callable[[list[GateLog]], Awaitable[None]],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        """Live feed of the vehicles currently inside."""
        return await self._repository.subscribe(
            on_snapshot,
            [self._repository.where("exit_time", "==", None)],
            [self._repository.order("entry_time", descending=True)],
            on_error,
        )

    # ------------------------------------------------------------------

    async def _check_authorized(self, operator: Principal, action: Action) -> None:
        if self._authorizer is not None:
            await require_authorized(self._authorizer, operator.principal_id, action)
