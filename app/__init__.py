"""
Clinic Scheduling Service

A FastAPI-based scheduling core for clinics: doctors publish capacity-bounded
sessions, patients book slots in them, and both drive the session and
appointment lifecycles.
"""

__version__ = "1.0.0"
