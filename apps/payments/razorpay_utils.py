"""
Razorpay Integration Utilities

Handles Razorpay payment gateway integration including:
- Order creation
- Payment verification
- Webhook signature verification
- Refunds
"""
import hashlib
import hmac
from decimal import Decimal

import razorpay
from django.conf import settings

from common.exceptions import PaymentGatewayError


def to_paise(amount):
    """Rupees to paise (Razorpay uses the smallest currency unit)."""
    return int(Decimal(str(amount)) * 100)


class RazorpayClient:
    """
    Wrapper class for Razorpay client operations

    Keys come from settings (RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET).
    """

    def __init__(self, key_id=None, key_secret=None, webhook_secret=None):
        """
        Raises:
            PaymentGatewayError: If the Razorpay keys are not configured
        """
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Razorpay is not configured")

        self.client = razorpay.Client(auth=(self.key_id, self.key_secret))

    def create_order(self, amount, currency=None, receipt=None, notes=None):
        """
        Create Razorpay order

        Args:
            amount (Decimal): Amount in rupees (will be converted to paise)
            currency (str): Currency code (default: settings.RAZORPAY_CURRENCY)
            receipt (str): Order receipt/reference
            notes (dict): Additional metadata

        Returns:
            dict: Razorpay order response (id, amount in paise, currency, receipt, status)
        """
        order_data = {
            'amount': to_paise(amount),
            'currency': currency or getattr(settings, 'RAZORPAY_CURRENCY', 'INR'),
            'receipt': receipt or '',
            'payment_capture': 1,
        }

        if notes:
            order_data['notes'] = notes

        return self.client.order.create(data=order_data)

    def verify_payment_signature(self, razorpay_order_id, razorpay_payment_id, razorpay_signature):
        """
        Verify the checkout signature, HMAC-SHA256 of "order_id|payment_id"
        keyed with the key secret.

        Returns:
            bool: True if signature is valid, False otherwise
        """
        if not razorpay_signature:
            return False
        try:
            params_dict = {
                'razorpay_order_id': razorpay_order_id,
                'razorpay_payment_id': razorpay_payment_id,
                'razorpay_signature': razorpay_signature
            }
            self.client.utility.verify_payment_signature(params_dict)
            return True
        except razorpay.errors.SignatureVerificationError:
            return False

    def verify_webhook_signature(self, payload, signature):
        """
        Verify webhook signature from Razorpay

        Args:
            payload (bytes): Raw webhook payload
            signature (str): X-Razorpay-Signature header value

        Returns:
            bool: True if signature is valid, False otherwise
        """
        if not self.webhook_secret or not signature:
            return False

        expected_signature = hmac.new(
            self.webhook_secret.encode('utf-8'),
            payload,
            hashlib.sha256
        ).hexdigest()

        return hmac.compare_digest(expected_signature, signature)

    def refund(self, payment_id, amount):
        """
        Refund a captured payment (full or partial)

        Args:
            payment_id (str): Razorpay payment ID
            amount (Decimal): Amount in rupees

        Returns:
            dict: Refund entity; its `id` is the Razorpay refund ID
        """
        return self.client.payment.refund(payment_id, {'amount': to_paise(amount)})

    def get_public_key(self):
        """Key ID for frontend checkout (safe to expose)."""
        return self.key_id
