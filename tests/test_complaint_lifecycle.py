import unittest
from datetime import timedelta
from unittest import mock

from support import ADMIN_HEADERS, ApiTestCase, FakeHandle  # sets up the environment first
from sqlmodel import select

from models.complaints import Complaint, ComplaintCategory, ComplaintStatus, ComplaintUrgency
from models.task import Task, TechnicianStatus
from models.user import User
from services import complaints as lifecycle
from utils.errors import InvalidStateError
from utils.timeutils import as_utc, utc_now


class ApplyStatusTests(unittest.TestCase):
    def make_complaint(self, status=ComplaintStatus.submitted):
        return Complaint(
            id=1,
            user_id=1,
            title="Leak",
            description="Dripping meter",
            category=ComplaintCategory.water_leak,
            urgency=ComplaintUrgency.low,
            status=status,
            photos=[],
        )

    def test_resolved_at_follows_resolved_status(self):
        complaint = self.make_complaint()

        lifecycle.apply_status(complaint, ComplaintStatus.resolved)
        self.assertIsNotNone(complaint.resolved_at)
        self.assertIsNotNone(complaint.assigned_at)

        lifecycle.apply_status(complaint, ComplaintStatus.in_progress)
        self.assertIsNone(complaint.resolved_at)
        self.assertEqual(complaint.status, ComplaintStatus.in_progress)

    def test_rejected_does_not_stamp_assigned_at(self):
        complaint = self.make_complaint()
        lifecycle.apply_status(complaint, ComplaintStatus.rejected)
        self.assertIsNone(complaint.assigned_at)
        self.assertIsNone(complaint.resolved_at)

    def test_notes_are_appended(self):
        complaint = self.make_complaint()
        lifecycle.apply_status(complaint, ComplaintStatus.assigned, "Crew dispatched")
        lifecycle.apply_status(complaint, ComplaintStatus.in_progress, "  Valve ordered ")
        self.assertEqual(complaint.admin_notes, "Crew dispatched\nValve ordered")

    def test_backward_moves_allowed_by_default(self):
        complaint = self.make_complaint(ComplaintStatus.resolved)
        lifecycle.apply_status(complaint, ComplaintStatus.submitted)
        self.assertEqual(complaint.status, ComplaintStatus.submitted)

    def test_forward_only_when_enforced(self):
        complaint = self.make_complaint(ComplaintStatus.resolved)
        with mock.patch.object(lifecycle, "ENFORCE_FORWARD_TRANSITIONS", True):
            with self.assertRaises(InvalidStateError):
                lifecycle.apply_status(complaint, ComplaintStatus.in_progress)
            # staying put is always fine
            lifecycle.apply_status(complaint, ComplaintStatus.resolved)
        self.assertEqual(complaint.status, ComplaintStatus.resolved)

    def test_urgency_defaults_to_medium(self):
        self.assertEqual(lifecycle.parse_urgency(None), ComplaintUrgency.medium)
        self.assertEqual(lifecycle.parse_urgency("emergency"), ComplaintUrgency.emergency)


class ComplaintLifecycleApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.resident = self.make_user("resident@example.com")
        self.tech_user, self.technician = self.make_technician("tech@example.com")

    def test_full_lifecycle(self):
        complaint = self.file_complaint(self.resident)
        self.assertEqual(complaint["status"], "SUBMITTED")
        self.assertIsNone(complaint["resolved_at"])
        self.assertEqual(complaint["resident"]["email"], "resident@example.com")
        self.assertIsNone(complaint["task"])

        response = self.client.put(
            f"/complaints/{complaint['id']}/assign", json={"technician_id": self.technician.id}, headers=ADMIN_HEADERS
        )
        self.assertEqual(response.status_code, 200, response.text)
        assigned = response.json()
        self.assertEqual(assigned["status"], "ASSIGNED")
        self.assertIsNotNone(assigned["assigned_at"])
        self.assertEqual(assigned["task"]["technician_id"], self.technician.id)
        self.assertEqual(assigned["task"]["technician_email"], "tech@example.com")

        response = self.client.put(
            f"/complaints/{complaint['id']}/status", json={"status": "IN_PROGRESS"}, headers=self.auth(self.tech_user)
        )
        self.assertEqual(response.json()["status"], "IN_PROGRESS")

        response = self.client.put(
            f"/technicians/me/tasks/{complaint['id']}/status",
            json={"status": "RESOLVED", "note": "Replaced the coupling"},
            headers=self.auth(self.tech_user),
        )
        self.assertEqual(response.status_code, 200, response.text)
        resolved = response.json()
        self.assertEqual(resolved["status"], "RESOLVED")
        self.assertIsNotNone(resolved["resolved_at"])
        self.assertEqual(resolved["task"]["resolution_notes"], "Replaced the coupling")

        # admins can still reopen; resolved_at goes away with the status
        response = self.client.put(
            f"/complaints/{complaint['id']}/status",
            json={"status": "IN_PROGRESS", "admin_notes": "Leak is back"},
            headers=ADMIN_HEADERS,
        )
        reopened = response.json()
        self.assertEqual(reopened["status"], "IN_PROGRESS")
        self.assertIsNone(reopened["resolved_at"])
        self.assertEqual(reopened["admin_notes"], "Leak is back")

    def test_reassignment_keeps_single_task(self):
        _, other = self.make_technician("other-tech@example.com")
        complaint = self.file_complaint(self.resident)

        for technician in (self.technician, other):
            response = self.client.put(
                f"/complaints/{complaint['id']}/assign", json={"technician_id": technician.id}, headers=ADMIN_HEADERS
            )
            self.assertEqual(response.status_code, 200, response.text)

        self.session.expire_all()
        tasks = self.session.exec(select(Task).where(Task.complaint_id == complaint["id"])).all()
        self.assertEqual(len(tasks), 1)
        self.assertEqual(tasks[0].technician_id, other.id)

    def test_inactive_technician_is_rejected(self):
        _, inactive = self.make_technician("away@example.com", status=TechnicianStatus.inactive)
        complaint = self.file_complaint(self.resident)

        response = self.client.put(
            f"/complaints/{complaint['id']}/assign", json={"technician_id": inactive.id}, headers=ADMIN_HEADERS
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.reload(Complaint, complaint["id"]).status, ComplaintStatus.submitted)
        self.assertEqual(self.session.exec(select(Task)).all(), [])

    def test_assign_unknown_technician_is_404(self):
        complaint = self.file_complaint(self.resident)
        response = self.client.put(
            f"/complaints/{complaint['id']}/assign", json={"technician_id": 999}, headers=ADMIN_HEADERS
        )
        self.assertEqual(response.status_code, 404)

    def test_delete_removes_task_and_complaint(self):
        complaint = self.file_complaint(self.resident)
        self.client.put(
            f"/complaints/{complaint['id']}/assign", json={"technician_id": self.technician.id}, headers=ADMIN_HEADERS
        )

        response = self.client.delete(f"/complaints/{complaint['id']}", headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(self.reload(Complaint, complaint["id"]))
        self.assertEqual(self.session.exec(select(Task)).all(), [])

        response = self.client.delete(f"/complaints/{complaint['id']}", headers=ADMIN_HEADERS)
        self.assertEqual(response.status_code, 404)

    def test_invalid_category_lists_valid_values(self):
        response = self.client.post(
            "/complaints/",
            json={"title": "Odd", "description": "Something", "category": "GAS_LEAK"},
            headers=self.auth(self.resident),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("WATER_LEAK", response.json()["detail"])

    def test_blank_title_is_rejected(self):
        response = self.client.post(
            "/complaints/",
            json={"title": "   ", "description": "Something", "category": "NO_WATER"},
            headers=self.auth(self.resident),
        )
        self.assertEqual(response.status_code, 400)

    def test_defaults_and_location(self):
        complaint = self.file_complaint(
            self.resident,
            urgency=None,
            location_data={"latitude": -1.28, "longitude": 36.82, "address": "Kenyatta Ave"},
        )
        self.assertEqual(complaint["urgency"], "MEDIUM")
        self.assertEqual(complaint["location"]["address"], "Kenyatta Ave")

    def test_technician_cannot_touch_other_tasks(self):
        other_user, _ = self.make_technician("other-tech@example.com")
        complaint = self.file_complaint(self.resident)
        self.client.put(
            f"/complaints/{complaint['id']}/assign", json={"technician_id": self.technician.id}, headers=ADMIN_HEADERS
        )

        response = self.client.put(
            f"/technicians/me/tasks/{complaint['id']}/status",
            json={"status": "RESOLVED"},
            headers=self.auth(other_user),
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.reload(Complaint, complaint["id"]).status, ComplaintStatus.assigned)

    def test_resident_only_sees_own_complaint(self):
        neighbour = self.make_user("neighbour@example.com")
        complaint = self.file_complaint(self.resident)

        self.assertEqual(
            self.client.get(f"/complaints/{complaint['id']}", headers=self.auth(self.resident)).status_code, 200
        )
        self.assertEqual(
            self.client.get(f"/complaints/{complaint['id']}", headers=self.auth(neighbour)).status_code, 403
        )
        self.assertEqual(self.client.get("/complaints/12345", headers=ADMIN_HEADERS).status_code, 404)

    def test_lifecycle_pushes_reach_connected_parties(self):
        resident_handle, tech_handle, admin_handle = FakeHandle(), FakeHandle(), FakeHandle()
        self.registry.register_connection(self.resident.id, resident_handle)
        self.registry.register_connection(self.tech_user.id, tech_handle)
        self.registry.register_connection(None, admin_handle, is_admin=True)

        complaint = self.file_complaint(self.resident)
        self.client.put(
            f"/complaints/{complaint['id']}/assign", json={"technician_id": self.technician.id}, headers=ADMIN_HEADERS
        )

        self.assertEqual(admin_handle.events(), ["complaint-created", "complaint-assigned"])
        self.assertEqual(tech_handle.events(), ["task-assigned"])
        self.assertEqual(resident_handle.events(), ["complaint-status-updated"])
        self.assertEqual(resident_handle.sent[0]["data"]["status"], "ASSIGNED")

    def test_failed_push_does_not_undo_the_change(self):
        self.registry.register_connection(None, FakeHandle(fail=True), is_admin=True)
        complaint = self.file_complaint(self.resident)
        self.assertIsNotNone(self.reload(Complaint, complaint["id"]))


class TimestampTests(ApiTestCase):
    def test_saved_timestamps_are_utc(self):
        resident = self.make_user("resident@example.com")
        before = utc_now()
        complaint = self.file_complaint(resident)

        stored = self.reload(Complaint, complaint["id"])
        created_at = as_utc(stored.created_at)
        self.assertLessEqual(before - timedelta(seconds=1), created_at)
        self.assertLessEqual(created_at, utc_now())
        self.assertLessEqual(as_utc(self.reload(User, resident.id).created_at), utc_now())


class ComplaintQueryTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.resident = self.make_user("resident@example.com")
        for i in range(25):
            self.session.add(
                Complaint(
                    user_id=self.resident.id,
                    title=f"Complaint {i}",
                    description="No water since morning",
                    category=ComplaintCategory.no_water if i % 2 else ComplaintCategory.drainage,
                    urgency=ComplaintUrgency.medium,
                    status=ComplaintStatus.submitted,
                    photos=[],
                )
            )
        self.session.commit()

    def test_first_page(self):
        body = self.client.get("/complaints/?page=1", headers=ADMIN_HEADERS).json()
        self.assertEqual(len(body["complaints"]), 10)
        self.assertEqual(body["pagination"], {"page": 1, "limit": 10, "total": 25, "pages": 3})

    def test_last_page_is_partial(self):
        body = self.client.get("/complaints/?page=3", headers=ADMIN_HEADERS).json()
        self.assertEqual(len(body["complaints"]), 5)

    def test_bad_pagination_values(self):
        for query in ("limit=101", "limit=abc", "page=0", "limit=0", "page=two", "page=100000000000000000000"):
            with self.subTest(query=query):
                response = self.client.get(f"/complaints/?{query}", headers=ADMIN_HEADERS)
                self.assertEqual(response.status_code, 400)

    def test_filter_by_category(self):
        body = self.client.get("/complaints/?category=no_water&limit=100", headers=ADMIN_HEADERS).json()
        self.assertEqual(body["pagination"]["total"], 12)
        self.assertTrue(all(c["category"] == "NO_WATER" for c in body["complaints"]))

    def test_date_range_covers_today(self):
        today = utc_now().date().isoformat()
        body = self.client.get(
            f"/complaints/?start_date={today}&end_date={today}&limit=100", headers=ADMIN_HEADERS
        ).json()
        self.assertEqual(body["pagination"]["total"], 25)

    def test_end_date_before_start_date(self):
        response = self.client.get(
            "/complaints/?start_date=2024-05-10&end_date=2024-05-01", headers=ADMIN_HEADERS
        )
        self.assertEqual(response.status_code, 400)

    def test_my_complaints(self):
        body = self.client.get("/complaints/my-complaints?limit=5", headers=self.auth(self.resident)).json()
        self.assertEqual(body["pagination"]["pages"], 5)

    def test_stats(self):
        body = self.client.get("/complaints/stats", headers=ADMIN_HEADERS).json()
        self.assertEqual(body["total"], 25)
        self.assertEqual(body["by_status"]["submitted"], 25)
        self.assertEqual(body["recent_count"], 25)

    def test_residents_cannot_list_everything(self):
        response = self.client.get("/complaints/", headers=self.auth(self.resident))
        self.assertEqual(response.status_code, 403)


if __name__ == "__main__":
    unittest.main()
