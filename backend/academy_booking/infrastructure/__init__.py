"""
Infrastructure layer - external system integrations.
Keeps booking logic clean from implementation details.
"""

from .razorpay_gateway import RazorpayGateway, get_payment_gateway

__all__ = ['RazorpayGateway', 'get_payment_gateway']
