from .recurrence import ScheduleRecurrence

__all__ = ["ScheduleRecurrence"]
