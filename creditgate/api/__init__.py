"""
HTTP API for job admission, status, credits and surge pricing.
"""
