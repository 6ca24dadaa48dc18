"""Razorpay UPI Autopay subscription backend"""
