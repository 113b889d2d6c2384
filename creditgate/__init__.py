"""
CreditGate - credit-gated, surge-priced job admission over a durable queue.
"""
__version__ = "1.0.0"
