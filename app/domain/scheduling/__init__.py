"""
Scheduling Domain

Weekly doctor schedules (seven immutable day records, replaced wholesale)
and the slot allocator that proposes the next bookable time for a doctor.
"""

from .schedule import DaySchedule, WeeklySchedule
from .slot_allocator import SlotAllocator, SlotOffer, compute_next_slot

__all__ = ["DaySchedule", "WeeklySchedule", "SlotAllocator", "SlotOffer", "compute_next_slot"]
