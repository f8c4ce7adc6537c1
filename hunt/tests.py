import datetime
import json
from tempfile import TemporaryDirectory
from unittest.mock import MagicMock, patch

from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import DatabaseError
from django.test import Client, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from . import qr_sheet, services
from .models import Checkpoint, Participant, ScanEvent
from openpyxl import Workbook


class MediaIsolationMixin:
    def isolate_media(self):
        # Isoler les QR Codes générés pendant les tests
        self.media_tmp = TemporaryDirectory()
        self.addCleanup(self.media_tmp.cleanup)
        self.override_media = override_settings(MEDIA_ROOT=self.media_tmp.name)
        self.override_media.enable()
        self.addCleanup(self.override_media.disable)


class RegistrationApiTests(TestCase):
    def setUp(self):
        self.url = reverse("hunt:api_register")

    def register(self, payload):
        return self.client.post(self.url, json.dumps(payload), content_type="application/json")

    def test_register_creates_participant_and_first_scan(self):
        response = self.register({"registrationNumber": "R100", "code": "qr-code-1"})

        self.assertEqual(response.status_code, 200)
        participant = Participant.objects.get(registration_number="R100")
        self.assertEqual(response.json(), {
            "status": "success",
            "message": "Registration successful",
            "userId": str(participant.pk),
        })
        self.assertEqual(participant.progress, 1)
        self.assertEqual(participant.scanned_codes, ["qr-code-1"])

        scan = ScanEvent.objects.get(participant=participant)
        self.assertEqual(scan.code, "qr-code-1")
        self.assertEqual(scan.qr_code_number, 1)

    def test_register_sets_session_cookie(self):
        response = self.register({"registrationNumber": "R100", "code": "qr-code-1"})

        cookie = response.cookies["user_id"]
        self.assertEqual(cookie.value, response.json()["userId"])
        self.assertTrue(cookie["httponly"])
        self.assertEqual(int(cookie["max-age"]), 60 * 60 * 24 * 7)
        self.assertEqual(cookie["path"], "/")

    def test_register_twice_is_idempotent(self):
        first = self.register({"registrationNumber": "R100", "code": "qr-code-1"})
        second = self.register({"registrationNumber": "R100", "code": "qr-code-2"})

        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()["message"], "User already registered")
        self.assertEqual(second.json()["userId"], first.json()["userId"])
        self.assertEqual(second.cookies["user_id"].value, first.json()["userId"])

        self.assertEqual(Participant.objects.count(), 1)
        self.assertEqual(ScanEvent.objects.count(), 1)
        participant = Participant.objects.get()
        self.assertEqual(participant.scanned_codes, ["qr-code-1"])
        self.assertEqual(participant.progress, 1)

    def test_register_requires_both_fields(self):
        for payload in (
            {"registrationNumber": "R100"},
            {"code": "qr-code-1"},
            {"registrationNumber": "", "code": "qr-code-1"},
            {"registrationNumber": "R100", "code": "   "},
        ):
            response = self.register(payload)
            self.assertEqual(response.status_code, 400, payload)
            self.assertEqual(response.json(), {"error": "Registration number and code are required"})
            self.assertNotIn("user_id", response.cookies)

        self.assertFalse(Participant.objects.exists())

    def test_register_with_invalid_json(self):
        response = self.client.post(self.url, "not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)

    def test_register_get_not_allowed(self):
        self.assertEqual(self.client.get(self.url).status_code, 405)

    def test_register_requires_csrf_token_when_enforced(self):
        strict = Client(enforce_csrf_checks=True)
        response = strict.post(
            self.url,
            json.dumps({"registrationNumber": "R100", "code": "qr-code-1"}),
            content_type="application/json",
        )

        self.assertEqual(response.status_code, 403)
        self.assertFalse(Participant.objects.exists())

    def test_register_database_failure_is_generic(self):
        with patch(
            "hunt.services.Participant.objects.get_or_create",
            side_effect=DatabaseError("connection lost"),
        ), self.assertLogs("hunt.services", level="ERROR") as logs:
            response = self.register({"registrationNumber": "R100", "code": "qr-code-1"})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Failed to register user"})
        self.assertIn("connection lost", "\n".join(logs.output))


class ScanApiTests(TestCase):
    def setUp(self):
        self.url = reverse("hunt:api_scan")
        self.participant, _ = services.register_participant("R100", "qr-code-1")
        self.client.cookies["user_id"] = str(self.participant.pk)

    def scan(self, code, client=None):
        return (client or self.client).get(self.url, {"code": code})

    def test_scan_requires_code(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "QR code is required"})

    def test_scan_rejects_blank_code(self):
        response = self.scan("   ")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(ScanEvent.objects.count(), 1)

    def test_scan_keeps_code_verbatim(self):
        response = self.scan(" qr-code-1")

        self.assertEqual(response.json()["status"], "success")
        self.assertEqual(response.json()["components"], ["qr-code-1", " qr-code-1"])
        self.assertTrue(ScanEvent.objects.filter(code=" qr-code-1").exists())

    def test_scan_without_cookie_requires_registration(self):
        anonymous = Client()
        for code in ("qr-code-1", "qr-code-2", "anything"):
            response = self.scan(code, client=anonymous)
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {"status": "registration_required", "code": code})

        self.assertEqual(ScanEvent.objects.count(), 1)

    def test_scan_with_unknown_participant_clears_cookie(self):
        for raw in ("999999", "not-an-id"):
            self.client.cookies["user_id"] = raw
            response = self.scan("qr-code-2")

            self.assertEqual(response.json(), {"status": "registration_required", "code": "qr-code-2"})
            self.assertEqual(response.cookies["user_id"].value, "")
            self.assertEqual(int(response.cookies["user_id"]["max-age"]), 0)

    def test_scan_already_scanned_code(self):
        response = self.scan("qr-code-1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            "status": "already_scanned",
            "message": "You've already scanned this QR code",
            "progress": 1,
            "components": ["qr-code-1"],
        })
        self.participant.refresh_from_db()
        self.assertEqual(self.participant.progress, 1)
        self.assertEqual(self.participant.scanned_codes, ["qr-code-1"])
        self.assertEqual(ScanEvent.objects.count(), 1)

    def test_scan_new_code_updates_progress(self):
        scan_time = timezone.make_aware(datetime.datetime(2025, 1, 1, 12, 30, 0))

        with patch("hunt.services.timezone.now", return_value=scan_time):
            response = self.scan("qr-code-2")

        self.assertEqual(response.json(), {
            "status": "success",
            "message": "QR code scanned successfully",
            "progress": 2,
            "components": ["qr-code-1", "qr-code-2"],
            "scanCount": 0,
            "rank": 1,
            "complete": False,
        })
        self.participant.refresh_from_db()
        self.assertEqual(self.participant.progress, 2)
        self.assertEqual(self.participant.last_scan_time, scan_time)
        self.assertEqual(ScanEvent.objects.filter(participant=self.participant).count(), 2)

    def test_scan_count_is_system_wide(self):
        other, _ = services.register_participant("R200", "qr-code-1")
        services.record_scan(other.pk, "qr-code-2")

        response = self.scan("qr-code-2")

        self.assertEqual(response.json()["scanCount"], 1)

    def test_complete_after_five_components(self):
        for number in range(2, 5):
            response = self.scan(f"qr-code-{number}")
            self.assertFalse(response.json()["complete"])

        response = self.scan("qr-code-5")

        self.assertEqual(response.json()["progress"], 5)
        self.assertTrue(response.json()["complete"])

    def test_existing_scan_event_blocks_duplicate_append(self):
        # Un scan concurrent a déjà inséré l'événement
        ScanEvent.objects.create(participant=self.participant, code="qr-code-2")

        response = self.scan("qr-code-2")

        self.assertEqual(response.json()["status"], "already_scanned")
        self.assertEqual(ScanEvent.objects.filter(code="qr-code-2").count(), 1)
        self.participant.refresh_from_db()
        self.assertEqual(self.participant.scanned_codes, ["qr-code-1"])

    def test_scan_database_failure_is_generic(self):
        with patch(
            "hunt.services.ScanEvent.objects.filter",
            side_effect=DatabaseError("disk full"),
        ), self.assertLogs("hunt.services", level="ERROR"):
            response = self.scan("qr-code-2")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Failed to process QR code"})
        self.participant.refresh_from_db()
        self.assertEqual(self.participant.progress, 1)

    def test_progress_endpoint_has_no_side_effect(self):
        response = self.client.get(reverse("hunt:api_progress"))

        self.assertEqual(response.json(), {
            "status": "registered",
            "progress": 1,
            "components": ["qr-code-1"],
            "rank": 1,
            "complete": False,
            "total": 5,
        })
        self.assertEqual(ScanEvent.objects.count(), 1)

    def test_progress_endpoint_without_cookie(self):
        response = Client().get(reverse("hunt:api_progress"))
        self.assertEqual(response.json(), {"status": "registration_required"})


class RankTests(TestCase):
    def setUp(self):
        self.base_time = timezone.make_aware(datetime.datetime(2025, 1, 1, 12, 0, 0))

    def at(self, minutes):
        return self.base_time + datetime.timedelta(minutes=minutes)

    def test_more_progress_ranks_ahead(self):
        alice, _ = services.register_participant("A", "c1", now=self.at(0))
        bob, _ = services.register_participant("B", "c1", now=self.at(1))

        services.record_scan(alice.pk, "c2", now=self.at(2))
        bob_scan = services.record_scan(bob.pk, "c2", now=self.at(3))
        alice_scan = services.record_scan(alice.pk, "c3", now=self.at(4))

        self.assertEqual(alice_scan.rank, 1)
        self.assertEqual(bob_scan.rank, 2)
        self.assertLess(
            services.participant_status(alice.pk).rank,
            services.participant_status(bob.pk).rank,
        )

    def test_equal_progress_earlier_scan_ranks_ahead(self):
        services.register_participant("A", "c1", now=self.at(0))
        services.register_participant("B", "c1", now=self.at(5))

        self.assertEqual(services.compute_rank(1, self.at(0)), 1)
        self.assertEqual(services.compute_rank(1, self.at(5)), 2)

    def test_simultaneous_tie_favours_scanner(self):
        alice, _ = services.register_participant("A", "c1", now=self.at(0))
        bob, _ = services.register_participant("B", "c1", now=self.at(0))

        self.assertEqual(services.compute_rank(1, self.at(0), exclude=alice.pk), 1)
        self.assertEqual(services.compute_rank(1, self.at(0), exclude=bob.pk), 1)

    def test_leaderboard_order(self):
        services.register_participant("slow", "c1", now=self.at(0))
        fast, _ = services.register_participant("fast", "c1", now=self.at(1))
        services.record_scan(fast.pk, "c2", now=self.at(2))

        ranking = [(position, p.registration_number) for position, p in services.leaderboard()]
        self.assertEqual(ranking, [(1, "fast"), (2, "slow")])


class SessionMiddlewareTests(TestCase):
    def test_protected_pages_redirect_without_cookie(self):
        for url in ("/hunt/", "/clue/1/", "/components/", "/completion/"):
            response = self.client.get(url)
            self.assertRedirects(response, reverse("hunt:index"), fetch_redirect_response=False)

    def test_cookie_presence_is_enough_for_the_gate(self):
        self.client.cookies["user_id"] = "whatever"
        response = self.client.get(reverse("hunt:hunt"))
        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "hunt/hunt.html")

    def test_public_pages_are_not_gated(self):
        self.assertEqual(self.client.get(reverse("hunt:leaderboard")).status_code, 200)
        self.assertEqual(self.client.get(reverse("hunt:index")).status_code, 200)

    @override_settings(HUNT_PROTECTED_PATHS=["/leaderboard"])
    def test_protected_paths_are_configurable(self):
        response = self.client.get(reverse("hunt:leaderboard"))
        self.assertRedirects(response, reverse("hunt:index"), fetch_redirect_response=False)


class HuntPagesTests(MediaIsolationMixin, TestCase):
    def setUp(self):
        self.isolate_media()
        self.participant, _ = services.register_participant("R100", "qr-code-1")
        self.client.cookies["user_id"] = str(self.participant.pk)

    def test_index_redirects_registered_participant(self):
        response = self.client.get(reverse("hunt:index"))
        self.assertRedirects(response, reverse("hunt:hunt"), fetch_redirect_response=False)

    def test_index_shows_registration_form(self):
        response = Client().get(reverse("hunt:index"))
        self.assertEqual(response.context["default_code"], "qr-code-1")
        self.assertContains(response, reverse("hunt:api_register"))

    def test_hunt_page_uses_query_code(self):
        response = self.client.get(reverse("hunt:hunt"), {"code": "qr-code-3"})
        self.assertEqual(response.context["code"], "qr-code-3")

    def test_components_page_shows_progress(self):
        response = self.client.get(reverse("hunt:components"))

        self.assertContains(response, "Components collected: 1 / 5")
        self.assertEqual(response.context["status"].rank, 1)

    def test_components_page_with_stale_cookie(self):
        self.client.cookies["user_id"] = "424242"
        response = self.client.get(reverse("hunt:components"))

        self.assertRedirects(response, reverse("hunt:index"), fetch_redirect_response=False)
        self.assertEqual(response.cookies["user_id"].value, "")

    def test_completion_requires_all_components(self):
        response = self.client.get(reverse("hunt:completion"))
        self.assertRedirects(response, reverse("hunt:components"), fetch_redirect_response=False)

        for number in range(2, 6):
            services.record_scan(self.participant.pk, f"qr-code-{number}")

        response = self.client.get(reverse("hunt:completion"))
        self.assertContains(response, "Congratulations, R100!")

    def test_clue_unlocked_by_scan(self):
        Checkpoint.objects.create(order=1, code="qr-code-1", name="Fountain", clue_text="Look under the bench")
        Checkpoint.objects.create(order=2, code="qr-code-2", name="Library", clue_text="Second shelf")

        response = self.client.get(reverse("hunt:clue", args=[1]))
        self.assertContains(response, "Look under the bench")

        response = self.client.get(reverse("hunt:clue", args=[2]))
        self.assertRedirects(response, reverse("hunt:components"), fetch_redirect_response=False)

    def test_unknown_clue_is_404(self):
        response = self.client.get(reverse("hunt:clue", args=[42]))
        self.assertEqual(response.status_code, 404)

    def test_leaderboard_lists_participants(self):
        response = self.client.get(reverse("hunt:leaderboard"))
        self.assertContains(response, "R100")


class CheckpointTests(MediaIsolationMixin, TestCase):
    def setUp(self):
        self.isolate_media()

    def test_qr_code_generation_uses_site_base_url(self):
        capture = {}

        class DummyQR:
            def save(self, buffer, format='PNG'):
                buffer.write(b'dummy')

        def fake_make(data):
            capture['data'] = data
            return DummyQR()

        with override_settings(SITE_BASE_URL="https://hunt.example.org"), patch(
            "hunt.models.qrcode.make", side_effect=fake_make
        ):
            checkpoint = Checkpoint.objects.create(order=9, code="qr-code-9", name="Gate")

        self.assertEqual(capture.get("data"), "https://hunt.example.org/hunt/?code=qr-code-9")
        self.assertTrue(checkpoint.qr_code.name)

    def test_scan_event_records_checkpoint_order(self):
        Checkpoint.objects.create(order=3, code="qr-code-3", name="Statue")
        participant, _ = services.register_participant("R100", "qr-code-1")

        services.record_scan(participant.pk, "qr-code-3")

        self.assertEqual(ScanEvent.objects.get(code="qr-code-3").qr_code_number, 3)
        self.assertEqual(ScanEvent.objects.get(code="qr-code-1").qr_code_number, 1)

    def test_import_checkpoints_from_xlsx(self):
        with TemporaryDirectory() as tmp:
            path = f"{tmp}/checkpoints.xlsx"
            wb = Workbook()
            ws = wb.active
            ws.append(["Order", "Code", "Name", "Clue"])
            ws.append([1, "qr-code-1", "Fountain", "Go to the library"])
            ws.append([2, "qr-code-2", "Library", "Go to the gate"])
            wb.save(path)

            call_command("import_checkpoints_xlsx", path)

            ws.cell(row=3, column=4, value="Go to the statue")
            wb.save(path)
            call_command("import_checkpoints_xlsx", path)

        checkpoints = list(Checkpoint.objects.order_by("order"))
        self.assertEqual([c.code for c in checkpoints], ["qr-code-1", "qr-code-2"])
        self.assertEqual(checkpoints[1].clue_text, "Go to the statue")
        self.assertTrue(checkpoints[0].qr_code.name)

    def test_pdf_is_staff_only(self):
        Checkpoint.objects.create(order=1, code="qr-code-1", name="Fountain")
        url = reverse("hunt:checkpoints_pdf")

        response = self.client.get(url)
        self.assertEqual(response.status_code, 302)

        User.objects.create_user(username="staff", password="pass12345", is_staff=True)
        self.client.login(username="staff", password="pass12345")
        response = self.client.get(url)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/pdf")
        self.assertTrue(response.content.startswith(b"%PDF"))

    def test_admin_action_prints_selected_checkpoints_only(self):
        fountain = Checkpoint.objects.create(order=1, code="qr-code-1", name="Fountain")
        Checkpoint.objects.create(order=2, code="qr-code-2", name="Library")
        gate = Checkpoint.objects.create(order=3, code="qr-code-3", name="Gate")
        admin_user = User.objects.create_superuser("admin", "admin@example.org", "pass12345")
        self.client.force_login(admin_user)

        printed = []
        with patch("hunt.qr_sheet.draw_card", side_effect=lambda pdf, checkpoint, x, y: printed.append(checkpoint.code)):
            response = self.client.post(
                reverse("admin:hunt_checkpoint_changelist"),
                {"action": "download_qr_codes", "_selected_action": [gate.pk, fountain.pk]},
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/pdf")
        self.assertEqual(printed, ["qr-code-1", "qr-code-3"])

    def test_sheet_pages_hold_four_cards(self):
        for order in range(1, 6):
            Checkpoint.objects.create(order=order, code=f"qr-code-{order}", name=f"Spot {order}")
        pdf = MagicMock()

        with patch("hunt.qr_sheet.draw_card") as draw_card:
            count = qr_sheet.render_checkpoint_sheet(pdf, Checkpoint.objects.order_by("order"))

        self.assertEqual(count, 5)
        self.assertEqual(draw_card.call_count, 5)
        self.assertEqual(pdf.showPage.call_count, 2)
        first_slot = draw_card.call_args_list[0].args[2:]
        fifth_slot = draw_card.call_args_list[4].args[2:]
        self.assertEqual(first_slot, fifth_slot)
        pdf.save.assert_called_once()
