"""Order & payment service: Paystack checkout with webhook-confirmed orders."""

__version__ = "0.1.0"
