# Sales Notifier - Field Sales Visit Collection System
# =====================================================
# Field sales reps submit outlet visit records; each submission is rendered
# into a notification and delivered to the admin over WhatsApp.
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI routes and the admin dashboard (web/)
# - Application:    Submission use case (enrich -> render -> dispatch)
# - Domain:         Submission types and the template renderer (no I/O)
# - Infrastructure: WhatsApp session, reference store, importer, config
#
# The WhatsApp network client sits behind a narrow ChatClient interface so
# the browser automation can be replaced without touching the layers above.
