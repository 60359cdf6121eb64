# Application Layer
# =================
# Use cases that tie the domain to the reference store and messaging.

from .submission_service import AdminNumberNotConfiguredError, SubmissionService
