import datetime
from typing import List, Optional

from converters import RecurrenceType, to_day


class ScheduleRecurrence:
    """Date arithmetic deciding when a schedule produces an occurrence."""

    ONE_DAY = datetime.timedelta(days=1)

    @staticmethod
    def occurs_on(
        start_date: datetime.date,
        recurrence_type: RecurrenceType,
        offset_days: Optional[int],
        target_date: datetime.date,
    ) -> bool:
        """Return ``True`` if the schedule has an occurrence on ``target_date``.

        Both dates are truncated to calendar days first. Nothing occurs
        before ``start_date``.
        """
        recurrence_type = RecurrenceType(recurrence_type)
        start = to_day(start_date)
        target = to_day(target_date)
        if target < start:
            return False
        if recurrence_type is RecurrenceType.ONE_OFF:
            return target == start
        if recurrence_type is RecurrenceType.WEEKLY:
            return target.weekday() == start.weekday()
        if recurrence_type is RecurrenceType.OFFSET:
            if offset_days is None or offset_days <= 0:
                return False
            return (target - start).days % offset_days == 0
        raise ValueError(f"unknown recurrence type: {recurrence_type!r}")

    @classmethod
    def occurrences_in_range(
        cls,
        start_date: datetime.date,
        recurrence_type: RecurrenceType,
        offset_days: Optional[int],
        from_date: datetime.date,
        to_date: datetime.date,
    ) -> List[datetime.date]:
        """Return every occurrence between ``from_date`` and ``to_date`` inclusive."""
        current = to_day(from_date)
        end = to_day(to_date)
        occurrences: List[datetime.date] = []
        while current <= end:
            if cls.occurs_on(start_date, recurrence_type, offset_days, current):
                occurrences.append(current)
            current += cls.ONE_DAY
        return occurrences
