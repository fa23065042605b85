"""
Core building blocks: exceptions, chain constants, epoch/date math, retry and
rate limiting.
"""
