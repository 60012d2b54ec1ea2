"""vtguard core scanning components.

This package contains the content fingerprint, verdict types, the error
taxonomy, and the submit / poll / resolve orchestration that turns an
uploaded file into a clean, malicious or unknown verdict.
"""
