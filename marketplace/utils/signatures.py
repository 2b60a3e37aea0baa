import hashlib
import hmac


def hmac_sha256_hex(secret, message):
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signatures_match(expected, provided):
    if not isinstance(provided, str) or not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.strip().lower().encode())


def payment_signature(secret, gateway_order_id, gateway_payment_id):
    return hmac_sha256_hex(secret, f"{gateway_order_id}|{gateway_payment_id}")
