import unittest
import uuid
from unittest.mock import patch

from core.db import DB
from core.errors import BadRequestError, DuplicateSessionError, NotFoundError, UserNotFoundError
from core.models.payment_record import PaymentRecord
from core.models.user import User
from core.models.user_notice import UserNotice
from core.payment_service import GatewayOutcome, OutcomeKind, initiate_payment, reconcile_payment
from core.payment_store import create_payment, get_payment
from core.phonepe_client import OrderStatus
from core.plan_service import DAY_MS, create_user_profile, now_ms


class FakeGateway:
    def __init__(self, state="PENDING"):
        self.state = state
        self.checkouts = []

    def get_access_token(self):
        return "token-demo"

    def initiate_checkout(self, session_id, amount_minor_units, description, redirect_url, token=None):
        self.checkouts.append((session_id, amount_minor_units, description, redirect_url))
        return f"https://mercury-uat.phonepe.com/transact/{session_id}"

    def get_order_status(self, session_id, token=None):
        return OrderStatus(self.state, transaction_id="OM123", payment_mode="UPI_QR", paid_amount=49900)


class GatewayOutcomeTestCase(unittest.TestCase):
    def test_known_states(self):
        self.assertEqual(GatewayOutcome.from_state("COMPLETED").kind, OutcomeKind.COMPLETED)
        self.assertEqual(GatewayOutcome.from_state("EXPIRED").kind, OutcomeKind.FAILED)
        self.assertEqual(GatewayOutcome.from_state("FAILED").payment_status, "failed")
        self.assertEqual(GatewayOutcome.from_state("PENDING").payment_status, "pending")

    def test_unknown_state_passes_through_lowercase(self):
        outcome = GatewayOutcome.from_state("AUTHORIZED")
        self.assertEqual(outcome.kind, OutcomeKind.OTHER)
        self.assertEqual(outcome.payment_status, "authorized")


class PaymentFlowTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.user_id = f"u_{uuid.uuid4().hex[:10]}"
        self.session_ids = []
        create_user_profile(self.session, self.user_id)

    def tearDown(self):
        self.session.rollback()
        self.session.query(PaymentRecord).filter(PaymentRecord.user_id == self.user_id).delete()
        self.session.query(UserNotice).filter(UserNotice.owner_id == self.user_id).delete()
        self.session.query(User).filter(User.id == self.user_id).delete()
        self.session.commit()
        self.session.close()

    def _new_payment(self, plan_id="basic", plan_name="Basic", user_id=None):
        sid = f"TXN_{uuid.uuid4()}"
        create_payment(
            self.session,
            sid,
            {"user_id": user_id or self.user_id, "plan_id": plan_id, "plan_name": plan_name, "amount_cents": 49900},
        )
        return sid

    def _stored_status(self, sid):
        check = DB.get_session()
        try:
            return check.query(PaymentRecord).filter(PaymentRecord.session_id == sid).first().status
        finally:
            check.close()

    def test_initiate_then_complete_scenario(self):
        gateway = FakeGateway()
        result = initiate_payment(
            self.session, self.user_id, "basic", "Basic", 499, origin="https://app.example.com", client=gateway
        )
        sid = result["sessionId"]
        self.assertTrue(sid.startswith("TXN_"))
        self.assertIn(sid, result["redirectUrl"])
        _, amount, description, redirect_url = gateway.checkouts[0]
        self.assertEqual(amount, 49900)
        self.assertEqual(description, "Payment for plan: Basic")
        self.assertEqual(redirect_url, f"https://app.example.com/payment/success?plan_id=basic&session_id={sid}")
        self.assertEqual(get_payment(self.session, sid).status, "pending")

        gateway.state = "COMPLETED"
        verified = reconcile_payment(self.session, sid, client=gateway)
        self.assertEqual(verified["gatewayState"], "COMPLETED")
        self.assertEqual(verified["paymentStatus"], "completed")
        self.assertEqual(verified["user"]["plan"], "basic")
        self.assertEqual(verified["user"]["tokenLimit"], 230000)
        self.assertEqual(verified["user"]["tokensUsed"], 0)
        self.assertEqual(verified["payment"]["transactionId"], "OM123")
        self.assertEqual(verified["payment"]["paidAmount"], 499.0)

    def test_initiate_validates_input(self):
        gateway = FakeGateway()
        with self.assertRaises(BadRequestError):
            initiate_payment(self.session, self.user_id, "", "Basic", 499, client=gateway)
        with self.assertRaises(BadRequestError):
            initiate_payment(self.session, self.user_id, "basic", "Basic", None, client=gateway)
        with self.assertRaises(BadRequestError):
            initiate_payment(self.session, self.user_id, "basic", "Basic", -5, client=gateway)
        with self.assertRaises(NotFoundError):
            initiate_payment(self.session, "missing-user", "basic", "Basic", 499, client=gateway)
        self.assertEqual(gateway.checkouts, [])

    def test_completion_is_applied_once(self):
        sid = self._new_payment()
        gateway = FakeGateway("COMPLETED")
        first = reconcile_payment(self.session, sid, client=gateway)
        with patch("core.payment_service.apply_subscription") as apply_mock:
            second = reconcile_payment(self.session, sid, client=gateway)
        apply_mock.assert_not_called()
        self.assertEqual(second["paymentStatus"], "completed")
        self.assertEqual(second["user"], first["user"])
        notices = self.session.query(UserNotice).filter(UserNotice.owner_id == self.user_id).all()
        self.assertEqual(len(notices), 1)
        self.assertEqual(notices[0].ref_id, sid)

    def test_status_sequence_never_reverts(self):
        sid = self._new_payment()
        gateway = FakeGateway("PENDING")
        observed = [reconcile_payment(self.session, sid, client=gateway)["paymentStatus"] for _ in range(2)]
        gateway.state = "FAILED"
        observed.append(reconcile_payment(self.session, sid, client=gateway)["paymentStatus"])
        for state in ("COMPLETED", "PENDING", "AUTHORIZED"):
            gateway.state = state
            observed.append(reconcile_payment(self.session, sid, client=gateway)["paymentStatus"])
        self.assertEqual(observed, ["pending", "pending", "failed", "failed", "failed", "failed"])
        self.assertEqual(self._stored_status(sid), "failed")

    def test_expired_marks_failed_without_subscription(self):
        sid = self._new_payment()
        result = reconcile_payment(self.session, sid, client=FakeGateway("EXPIRED"))
        self.assertEqual(result["paymentStatus"], "failed")
        self.assertIsNone(result["user"]["plan"])
        self.assertEqual(result["payment"]["gatewayState"], "EXPIRED")

    def test_unknown_state_is_passed_through(self):
        sid = self._new_payment()
        result = reconcile_payment(self.session, sid, client=FakeGateway("AUTHORIZED"))
        self.assertEqual(result["paymentStatus"], "authorized")
        self.assertEqual(self._stored_status(sid), "pending")

    def test_missing_session_id(self):
        with self.assertRaises(BadRequestError):
            reconcile_payment(self.session, "  ", client=FakeGateway())

    def test_unknown_session(self):
        with self.assertRaises(NotFoundError):
            reconcile_payment(self.session, "TXN_missing", client=FakeGateway("COMPLETED"))

    def test_duplicate_session(self):
        sid = self._new_payment()
        with self.assertRaises(DuplicateSessionError):
            create_payment(self.session, sid, {"user_id": self.user_id, "plan_id": "basic"})

    def test_record_for_missing_user(self):
        sid = self._new_payment(user_id=f"ghost_{uuid.uuid4().hex[:6]}")
        try:
            with self.assertRaises(UserNotFoundError):
                reconcile_payment(self.session, sid, client=FakeGateway("COMPLETED"))
            self.assertEqual(self._stored_status(sid), "pending")
        finally:
            self.session.query(PaymentRecord).filter(PaymentRecord.session_id == sid).delete()
            self.session.commit()

    def test_failed_apply_keeps_record_pending(self):
        sid = self._new_payment()
        gateway = FakeGateway("COMPLETED")
        with patch("core.payment_service.apply_subscription", side_effect=RuntimeError("db down")):
            with self.assertRaises(RuntimeError):
                reconcile_payment(self.session, sid, client=gateway)
        self.assertEqual(self._stored_status(sid), "pending")
        user = self.session.query(User).filter(User.id == self.user_id).first()
        self.session.refresh(user)
        self.assertIsNone(user.payment_lease_until)
        self.assertIsNone(user.plan)

        # 下一次轮询重新完成开通
        result = reconcile_payment(self.session, sid, client=gateway)
        self.assertEqual(result["paymentStatus"], "completed")
        self.assertEqual(result["user"]["plan"], "basic")

    def test_busy_lease_reports_pending(self):
        sid = self._new_payment()
        self.session.query(User).filter(User.id == self.user_id).update(
            {"payment_lease_until": now_ms() + DAY_MS}
        )
        self.session.commit()
        result = reconcile_payment(self.session, sid, client=FakeGateway("COMPLETED"))
        self.assertEqual(result["paymentStatus"], "pending")
        self.assertEqual(self._stored_status(sid), "pending")

    def test_renewal_through_reconcile_stacks_expiry(self):
        now = now_ms()
        self.session.query(User).filter(User.id == self.user_id).update(
            {"plan": "premium", "plan_expiry_date": now + 5 * DAY_MS}
        )
        self.session.commit()
        sid = self._new_payment(plan_id="premium", plan_name="Premium")
        result = reconcile_payment(self.session, sid, client=FakeGateway("COMPLETED"), now=now)
        self.assertEqual(result["user"]["planExpiryDate"], now + 35 * DAY_MS)
        self.assertEqual(result["user"]["voiceMinutesRemaining"], 5)


if __name__ == "__main__":
    unittest.main()
