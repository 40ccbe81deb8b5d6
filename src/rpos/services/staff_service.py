from __future__ import annotations

import json
import logging
from datetime import date as date_cls
from datetime import datetime
from typing import Iterable, Optional

from rpos.domain.errors import NotFoundError, ValidationError
from rpos.domain.models import ATTENDANCE_STATUSES, STAFF_ROLES, Attendance, Staff, new_id, now_iso

log = logging.getLogger(__name__)


class StaffService:
    def __init__(self, repo):
        self.repo = repo

    def add_staff(
        self,
        name: str,
        phone: str,
        role: str = "staff",
        salary: float = 0.0,
        joining_date: Optional[str] = None,
        permissions: Iterable[str] = (),
    ) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Staff name is required.")
        if role not in STAFF_ROLES:
            raise ValidationError(f"Unknown staff role: {role}")
        if float(salary) < 0:
            raise ValidationError("Salary must be >= 0.")

        staff = Staff(
            id=new_id("staff"),
            name=name,
            phone=(phone or "").strip(),
            role=role,
            salary=float(salary),
            joining_date=joining_date or date_cls.today().isoformat(),
            permissions=tuple(permissions),
            created_at=now_iso(),
        )
        self.repo.add_staff(staff)
        log.info("staff_added id=%s role=%s", staff.id, role)
        return staff.id

    def get_staff(self, staff_id: str) -> Staff:
        s = self.repo.get_staff(staff_id)
        if not s:
            raise NotFoundError("Staff member not found.")
        return s

    def list_staff(self, active_only: bool = False) -> list[Staff]:
        return self.repo.list_staff(active_only=active_only)

    def update_staff(self, staff_id: str, **fields) -> Staff:
        if "role" in fields and fields["role"] not in STAFF_ROLES:
            raise ValidationError(f"Unknown staff role: {fields['role']}")
        if "salary" in fields and float(fields["salary"]) < 0:
            raise ValidationError("Salary must be >= 0.")
        if "permissions" in fields:
            fields["permissions_json"] = json.dumps(list(fields.pop("permissions")))
        if "is_active" in fields:
            fields["is_active"] = int(bool(fields["is_active"]))
        try:
            updated = self.repo.update_staff(staff_id, fields)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if not updated:
            raise NotFoundError("Staff member not found.")
        return self.get_staff(staff_id)

    def deactivate(self, staff_id: str) -> Staff:
        return self.update_staff(staff_id, is_active=False)

    def mark_attendance(
        self,
        staff_id: str,
        status: str = "present",
        day: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Attendance:
        """Upsert today's (or ``day``'s) attendance row for one staff member."""
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError(f"Unknown attendance status: {status}")
        self.get_staff(staff_id)
        record = Attendance(
            id=new_id("att"),
            staff_id=staff_id,
            date=day or date_cls.today().isoformat(),
            status=status,
            check_in=datetime.now().strftime("%H:%M") if status != "absent" else None,
            notes=notes,
        )
        saved = self.repo.upsert_attendance(record)
        log.info("attendance_marked staff=%s date=%s status=%s", staff_id, saved.date, status)
        return saved

    def staff_attendance(self, staff_id: str, month: str) -> list[Attendance]:
        """``month`` is ``YYYY-MM``."""
        return self.repo.list_attendance(staff_id=staff_id, date_prefix=month)

    def attendance_for_date(self, day: str) -> list[Attendance]:
        return self.repo.list_attendance(date_prefix=day)
