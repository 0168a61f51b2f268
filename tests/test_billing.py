from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy.exc import IntegrityError

from ezyolive.core.config import settings
from ezyolive.models.billing import INVOICE_NUMBER_INDEX, BillingStatus
from ezyolive.schemas.billing import BillingUpdate
from ezyolive.services.audit_service import RequestContext
from ezyolive.services.billing_service import BillingService, _is_invoice_number_clash

from .conftest import auth_headers

BILLING = "/api/v1/billing"

CONSULTATION = {"service": "Consultation", "quantity": 1, "unit_price": "100.00"}

def invoice(patient, **extra):
    data = {
        "patient_id": patient.id,
        "items": [CONSULTATION],
        "tax": "10.00",
        "discount": "5.00",
    }
    data.update(extra)
    return data

def money(value):
    return Decimal(str(value))

class TestCreateBilling:

    def test_totals_are_computed(self, client, patient, doctor):
        response = client.post(BILLING, json=invoice(patient), headers=auth_headers(doctor))
        assert response.status_code == 201

        data = response.json()
        assert data["doctor_id"] == doctor.id
        assert data["status"] == "draft"
        assert money(data["subtotal"]) == Decimal("100")
        assert money(data["total"]) == Decimal("105")
        assert money(data["balance"]) == Decimal("105")
        assert money(data["items"][0]["total"]) == Decimal("100")
        assert data["payment_details"] is None
        assert data["due_date"] == "2025-02-05T08:00:00"

    def test_invoice_numbers_are_sequential(self, client, patient, doctor):
        first = client.post(BILLING, json=invoice(patient), headers=auth_headers(doctor))
        second = client.post(BILLING, json=invoice(patient), headers=auth_headers(doctor))

        assert first.json()["invoice_number"] == "INV-2501-0001"
        assert second.json()["invoice_number"] == "INV-2501-0002"

    def test_numbering_restarts_next_month(self, client, clock, patient, doctor):
        client.post(BILLING, json=invoice(patient), headers=auth_headers(doctor))
        clock.current = datetime(2025, 2, 3, 9, 0)

        response = client.post(BILLING, json=invoice(patient), headers=auth_headers(doctor))
        assert response.json()["invoice_number"] == "INV-2502-0001"

    def test_item_total_must_match(self, client, patient, doctor):
        item = dict(CONSULTATION, quantity=2, total="150.00")
        response = client.post(
            BILLING, json=invoice(patient, items=[item]), headers=auth_headers(doctor)
        )
        assert response.status_code == 422

    def test_patients_cannot_create(self, client, patient):
        response = client.post(BILLING, json=invoice(patient), headers=auth_headers(patient))
        assert response.status_code == 403

    def test_admin_must_name_doctor(self, client, patient, admin):
        response = client.post(BILLING, json=invoice(patient), headers=auth_headers(admin))
        assert response.status_code == 422

    def test_appointment_must_match_parties(
        self, client, patient, other_patient, doctor, make_appointment
    ):
        appointment = make_appointment(
            other_patient, doctor, datetime(2025, 1, 7, 10), datetime(2025, 1, 7, 10, 30)
        )
        response = client.post(
            BILLING,
            json=invoice(patient, appointment_id=appointment.id),
            headers=auth_headers(doctor)
        )
        assert response.status_code == 422

    def test_past_due_pending_invoice_is_overdue(self, client, patient, doctor):
        response = client.post(
            BILLING,
            json=invoice(patient, status="pending", due_date="2025-01-01T00:00:00"),
            headers=auth_headers(doctor)
        )
        assert response.json()["status"] == "overdue"

    def test_number_clash_is_retryable(self, client, patient, doctor, monkeypatch):
        client.post(BILLING, json=invoice(patient), headers=auth_headers(doctor))
        monkeypatch.setattr(
            BillingService, "_next_invoice_number", lambda self, now: "INV-2501-0001"
        )

        response = client.post(BILLING, json=invoice(patient), headers=auth_headers(doctor))
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_invoice_number"
        assert response.json()["retryable"] is True

class TestPayments:

    def _create(self, client, doctor, data):
        response = client.post(BILLING, json=data, headers=auth_headers(doctor))
        assert response.status_code == 201
        return response.json()

    def test_full_payment(self, client, patient, doctor):
        billing = self._create(client, doctor, invoice(patient, status="pending"))

        response = client.post(
            f"{BILLING}/{billing['id']}/process-payment",
            json={"amount": "105.00", "payment_method": "credit_card", "card_last4": "4242"},
            headers=auth_headers(patient)
        )
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "paid"
        assert money(data["amount_paid"]) == Decimal("105")
        assert money(data["balance"]) == Decimal("0")
        assert data["payment_method"] == "credit_card"

        details = data["payment_details"]
        assert details["transaction_id"].startswith("txn_")
        assert details["card_last4"] == "4242"
        assert details["gateway"] == settings.PAYMENT_GATEWAY
        assert details["receipt_url"].endswith(details["transaction_id"])

    def test_second_payment_is_rejected(self, client, patient, doctor):
        billing = self._create(client, doctor, invoice(patient, status="pending"))
        url = f"{BILLING}/{billing['id']}/process-payment"
        payment = {"amount": "105.00", "payment_method": "cash"}

        client.post(url, json=payment, headers=auth_headers(patient))
        response = client.post(url, json=payment, headers=auth_headers(patient))

        assert response.status_code == 409
        assert response.json()["message"] == "This invoice has already been paid"

    def test_amount_and_method_are_required(self, client, patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.post(
            f"{BILLING}/{billing['id']}/process-payment",
            json={"payment_method": "cash"},
            headers=auth_headers(patient)
        )
        assert response.status_code == 422
        assert response.json()["message"] == "Payment amount and method are required"

    def test_amount_must_be_positive(self, client, patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.post(
            f"{BILLING}/{billing['id']}/process-payment",
            json={"amount": "0", "payment_method": "cash"},
            headers=auth_headers(patient)
        )
        assert response.status_code == 422

    def test_partial_payment_on_overdue_invoice(self, client, patient, doctor):
        billing = self._create(
            client, doctor,
            invoice(patient, status="pending", due_date="2025-01-01T00:00:00")
        )
        assert billing["status"] == "overdue"

        response = client.post(
            f"{BILLING}/{billing['id']}/process-payment",
            json={"amount": "50.00", "payment_method": "debit_card"},
            headers=auth_headers(patient)
        )
        data = response.json()
        assert data["status"] == "pending"
        assert money(data["balance"]) == Decimal("55")
        assert data["payment_details"]["card_last4"] == "N/A"

    def test_payment_marks_appointment_paid(self, client, patient, doctor, make_appointment):
        appointment = make_appointment(
            patient, doctor, datetime(2025, 1, 7, 10), datetime(2025, 1, 7, 10, 30)
        )
        billing = self._create(
            client, doctor, invoice(patient, appointment_id=appointment.id)
        )

        client.post(
            f"{BILLING}/{billing['id']}/process-payment",
            json={"amount": "105.00", "payment_method": "insurance"},
            headers=auth_headers(patient)
        )

        response = client.get(
            f"/api/v1/appointments/{appointment.id}", headers=auth_headers(patient)
        )
        assert response.json()["payment_status"] == "paid"

    def test_other_patient_cannot_pay(self, client, patient, other_patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.post(
            f"{BILLING}/{billing['id']}/process-payment",
            json={"amount": "105.00", "payment_method": "cash"},
            headers=auth_headers(other_patient)
        )
        assert response.status_code == 403

    def test_missing_invoice(self, client, admin):
        response = client.post(
            f"{BILLING}/999/process-payment",
            json={"amount": "1.00", "payment_method": "cash"},
            headers=auth_headers(admin)
        )
        assert response.status_code == 404

class TestBillingLifecycle:

    def _create(self, client, doctor, data):
        return client.post(BILLING, json=data, headers=auth_headers(doctor)).json()

    def test_update_items_recomputes_totals(self, client, patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.patch(
            f"{BILLING}/{billing['id']}",
            json={
                "items": [
                    CONSULTATION,
                    {"service": "Blood test", "quantity": 2, "unit_price": "25.00"},
                ],
                "status": "pending",
            },
            headers=auth_headers(doctor)
        )
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "pending"
        assert money(data["subtotal"]) == Decimal("150")
        assert money(data["total"]) == Decimal("155")
        assert len(data["items"]) == 2

    def test_patient_cannot_change(self, client, patient, other_patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.patch(
            f"{BILLING}/{billing['id']}",
            json={"patient_id": other_patient.id},
            headers=auth_headers(doctor)
        )
        assert response.status_code == 422

    def test_only_draft_or_pending_can_be_set(self, client, patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.patch(
            f"{BILLING}/{billing['id']}", json={"status": "paid"}, headers=auth_headers(doctor)
        )
        assert response.status_code == 422

    def test_cancel(self, client, patient, doctor, admin):
        billing = self._create(client, doctor, invoice(patient))
        url = f"{BILLING}/{billing['id']}"

        response = client.delete(url, headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        payment = client.post(
            f"{url}/process-payment",
            json={"amount": "105.00", "payment_method": "cash"},
            headers=auth_headers(patient)
        )
        update = client.patch(url, json={"notes": "late fee"}, headers=auth_headers(doctor))
        assert payment.status_code == 409
        assert update.status_code == 409

    def test_only_admin_cancels(self, client, patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.delete(f"{BILLING}/{billing['id']}", headers=auth_headers(doctor))
        assert response.status_code == 403

    def test_list_is_scoped(self, client, patient, other_patient, doctor):
        self._create(client, doctor, invoice(patient))
        self._create(client, doctor, invoice(other_patient))

        mine = client.get(BILLING, headers=auth_headers(patient)).json()
        assert mine["total"] == 1
        assert mine["billings"][0]["patient_id"] == patient.id

        everything = client.get(BILLING, headers=auth_headers(doctor)).json()
        assert everything["total"] == 2
        # Newest first
        assert everything["billings"][0]["invoice_number"] == "INV-2501-0002"

    def test_other_patient_cannot_view(self, client, patient, other_patient, doctor):
        billing = self._create(client, doctor, invoice(patient))

        response = client.get(f"{BILLING}/{billing['id']}", headers=auth_headers(other_patient))
        assert response.status_code == 403

    def test_update_reopens_paid_invoice(self, client, patient, doctor, make_appointment):
        """Adding charges to a paid invoice makes it payable again."""
        appointment = make_appointment(
            patient, doctor, datetime(2025, 1, 7, 10), datetime(2025, 1, 7, 10, 30)
        )
        billing = self._create(
            client, doctor,
            invoice(patient, status="pending", appointment_id=appointment.id,
                    tax="0", discount="0")
        )
        url = f"{BILLING}/{billing['id']}"
        client.post(
            f"{url}/process-payment",
            json={"amount": "100.00", "payment_method": "cash"},
            headers=auth_headers(patient)
        )

        updated = client.patch(
            url,
            json={"items": [
                CONSULTATION,
                {"service": "Blood test", "quantity": 1, "unit_price": "20.00"},
            ]},
            headers=auth_headers(doctor)
        ).json()
        assert updated["status"] == "pending"
        assert money(updated["balance"]) == Decimal("20")

        visit = client.get(
            f"/api/v1/appointments/{appointment.id}", headers=auth_headers(patient)
        )
        assert visit.json()["payment_status"] == "pending"

        paid = client.post(
            f"{url}/process-payment",
            json={"amount": "20.00", "payment_method": "cash"},
            headers=auth_headers(patient)
        )
        assert paid.status_code == 200
        assert paid.json()["status"] == "paid"
        assert money(paid.json()["balance"]) == Decimal("0")

    def test_update_uses_latest_payment(self, client, db, clock, patient, doctor):
        """An update recomputes from the stored amount paid, not a stale copy."""
        billing = self._create(client, doctor, invoice(patient, status="pending"))
        service = BillingService(db, clock)
        stale = service.get_billing(billing["id"])
        assert stale.amount_paid == Decimal("0")

        client.post(
            f"{BILLING}/{billing['id']}/process-payment",
            json={"amount": "105.00", "payment_method": "cash"},
            headers=auth_headers(patient)
        )

        updated = service.update_billing(
            billing["id"], BillingUpdate(notes="Paid at the desk"), RequestContext(doctor.id)
        )
        assert updated.amount_paid == Decimal("105")
        assert updated.balance == Decimal("0")
        assert updated.status == BillingStatus.PAID

class TestInvoiceNumberClash:

    def _integrity_error(self, orig):
        return IntegrityError("INSERT INTO billings ...", {}, orig)

    def test_matches_constraint_name(self):
        orig = SimpleNamespace(diag=SimpleNamespace(constraint_name=INVOICE_NUMBER_INDEX))
        assert _is_invoice_number_clash(self._integrity_error(orig))

    def test_other_constraint_is_not_a_clash(self):
        orig = SimpleNamespace(diag=SimpleNamespace(constraint_name="billings_patient_id_fkey"))
        assert not _is_invoice_number_clash(self._integrity_error(orig))

    def test_sqlite_message(self):
        orig = Exception("UNIQUE constraint failed: billings.invoice_number")
        assert _is_invoice_number_clash(self._integrity_error(orig))

    def test_unrelated_message(self):
        orig = Exception("NOT NULL constraint failed: billing_items.service")
        assert not _is_invoice_number_clash(self._integrity_error(orig))
