"""
VNPay payload builders for tests.

Usage:
    from billing.tests.helpers import vnpay_callback_params

    params = vnpay_callback_params(payment, response_code="24")
    PaymentOrchestrator.handle_ipn(params)
"""

from billing.gateways.vnpay import RESPONSE_HASH_FIELDS, build_query, sign

VNPAY_TEST_SETTINGS = {
    "VNPAY_TMN_CODE": "TESTTMN1",
    "VNPAY_HASH_SECRET": "test-hash-secret",
    "VNPAY_PAYMENT_URL": "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
    "VNPAY_API_URL": "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction",
    "VNPAY_RETURN_URL": "https://clinic.example.com/api/v1/billing/vnpay/return/",
    "VNPAY_API_TIMEOUT": 5.0,
    "VNPAY_PAYMENT_TIMEOUT_MINUTES": 15,
    "VNPAY_SERVER_IP": "10.0.0.1",
}
TEST_HASH_SECRET = VNPAY_TEST_SETTINGS["VNPAY_HASH_SECRET"]


def signed_vnpay_params(params: dict, secret: str = TEST_HASH_SECRET) -> dict:
    """Add vnp_SecureHash the way VNPay signs return-URL and IPN payloads."""
    signed = {key: str(value) for key, value in params.items()}
    signed["vnp_SecureHash"] = sign(build_query(signed), secret)
    return signed


def vnpay_callback_params(payment, response_code: str = "00", amount=None, **overrides) -> dict:
    """Signed VNPay payload for a payment, successful by default."""
    params = {
        "vnp_TmnCode": VNPAY_TEST_SETTINGS["VNPAY_TMN_CODE"],
        "vnp_TxnRef": payment.order_reference,
        "vnp_Amount": int((amount if amount is not None else payment.amount) * 100),
        "vnp_OrderInfo": "Payment for invoice",
        "vnp_ResponseCode": response_code,
        "vnp_TransactionStatus": response_code,
        "vnp_TransactionNo": "14123456",
        "vnp_BankCode": "NCB",
        "vnp_PayDate": "20261019103000",
    }
    params.update(overrides)
    return signed_vnpay_params(params)


def merchant_api_response(secret: str = TEST_HASH_SECRET, **fields) -> dict:
    """Signed merchant API (querydr / refund) response body."""
    body = {
        "vnp_ResponseId": "resp-1",
        "vnp_Command": "querydr",
        "vnp_ResponseCode": "00",
        "vnp_Message": "Request successful",
        "vnp_TmnCode": VNPAY_TEST_SETTINGS["VNPAY_TMN_CODE"],
        **{key: str(value) for key, value in fields.items()},
    }
    body["vnp_SecureHash"] = sign(
        "|".join(str(body.get(name, "")) for name in RESPONSE_HASH_FIELDS), secret
    )
    return body
