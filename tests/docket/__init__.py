"""
Trial docket tests.
"""
